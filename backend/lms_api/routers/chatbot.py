from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from ..db import get_session
from ..schemas import MessageResponse
from ..security import get_current_user, require_roles
from ..services.cached_vector_search import CachedVectorSearchService
from ..services.chatbot import ChatbotService
from ..services.gemini import GeminiClient, get_gemini_client
from ..services.vector_search import VectorSearchService


router = APIRouter(prefix="/chatbot", tags=["chatbot"])


class Turn(BaseModel):
    role: Literal["user", "model"]
    content: str


class PromptRequest(BaseModel):
    question: str = Field(min_length=1)
    session_history: List[Turn] = Field(default_factory=list)


class ChatbotResponse(BaseModel):
    response: str


class DocumentCreate(BaseModel):
    content: str = Field(min_length=1)
    metadata: Optional[Dict[str, Any]] = None


class DocumentRead(BaseModel):
    id: str
    content: str
    metadata: Optional[Dict[str, Any]] = None


class WarmUpRequest(BaseModel):
    queries: List[str]
    limit: int = 5
    threshold: float = 0.6


class WarmUpResponse(BaseModel):
    success_count: int
    fail_count: int


def get_vector_search(session=Depends(get_session), client: GeminiClient = Depends(get_gemini_client)):
    return VectorSearchService(session, client)


def get_cached_search(vector_search: VectorSearchService = Depends(get_vector_search)):
    return CachedVectorSearchService(vector_search)


def get_chatbot_service(
    search: CachedVectorSearchService = Depends(get_cached_search),
    client: GeminiClient = Depends(get_gemini_client),
):
    return ChatbotService(search, client)


@router.post("/", response_model=ChatbotResponse)
def ask(
    payload: PromptRequest,
    user=Depends(get_current_user),
    chatbot: ChatbotService = Depends(get_chatbot_service),
):
    history = [turn.model_dump() for turn in payload.session_history]
    return chatbot.handle_question(user, payload.question, history)


@router.post("/documents", response_model=DocumentRead, status_code=status.HTTP_201_CREATED)
def add_document(
    payload: DocumentCreate,
    user=Depends(require_roles("admin")),
    vector_search: VectorSearchService = Depends(get_vector_search),
):
    document = vector_search.add_document(payload.content, payload.metadata)
    return DocumentRead(id=str(document.id), content=document.content, metadata=document.doc_metadata)


@router.delete("/cache", response_model=MessageResponse)
def clear_cache(user=Depends(require_roles("admin")), search: CachedVectorSearchService = Depends(get_cached_search)):
    removed = search.clear_all()
    return {"message": f"Cleared {removed} cached vector search entries"}


@router.post("/cache/warm-up", response_model=WarmUpResponse)
def warm_up_cache(
    payload: WarmUpRequest,
    user=Depends(require_roles("admin")),
    search: CachedVectorSearchService = Depends(get_cached_search),
):
    return search.warm_up_cache(payload.queries, payload.limit, payload.threshold)


@router.delete("/cache/query", response_model=MessageResponse)
def invalidate_query(
    query: str,
    limit: int = 5,
    threshold: float = 0.6,
    user=Depends(require_roles("admin")),
    search: CachedVectorSearchService = Depends(get_cached_search),
):
    search.invalidate_query(query, limit, threshold)
    return {"message": "Cache invalidated successfully"}
