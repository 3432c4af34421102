import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

from ..config import settings
from ..utils.log import log
from .cached_vector_search import CachedVectorSearchService
from .gemini import GeminiClient
from .prompts import build_prompt


logger = logging.getLogger(__name__)


def user_context_for(user) -> Dict[str, Any]:
    return {"id": user.id, "role": user.role, "email": user.email}


class ChatbotService:
    def __init__(self, search: CachedVectorSearchService, client: GeminiClient):
        self.search = search
        self.client = client

    @log(
        args_message=lambda a: f"userId={a['user'].id}, role={a['user'].role}",
        success_message=lambda r, a: f"userId={a['user'].id}, role={a['user'].role}",
    )
    def handle_question(
        self, user, question: str, session_history: Optional[List[Dict[str, str]]] = None
    ) -> Dict[str, str]:
        logger.debug("Prompt: %s, sessionHistory: %s", question, session_history)
        user_context = f"The current authenticated user is: {json.dumps(user_context_for(user))}"
        data = self.search.search_and_format_context(
            question,
            settings.chatbot.search_limit,
            settings.chatbot.search_threshold,
        )
        text = self.client.generate(build_prompt(question, data, user_context, session_history))
        if not text:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="No response from Gemini")
        logger.debug("Final answer: %s", text)
        return {"response": text}
