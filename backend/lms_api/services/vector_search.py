"""Similarity search over the knowledge documents used by the chatbot.

Documents are stored with their embedding in ``KnowledgeDocument``; a search
embeds the query and ranks every stored document by cosine similarity.
"""

import json
import math
from typing import Any, Dict, List, Optional, Sequence

from fastapi import HTTPException, status
from sqlmodel import Session, select

from ..models import KnowledgeDocument
from ..utils.log import log
from .gemini import GeminiClient


NO_RESULTS_MESSAGE = "No relevant information found in the knowledge base."


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    if not left or not right or len(left) != len(right):
        return 0.0
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    return dot / norm if norm else 0.0


def format_context(results: List[Dict[str, Any]]) -> str:
    if not results:
        return NO_RESULTS_MESSAGE
    blocks = []
    for index, result in enumerate(results, start=1):
        metadata = f"\nMetadata: {json.dumps(result['metadata'])}" if result.get("metadata") else ""
        blocks.append(
            f"[Document {index}] (Similarity: {result['similarity'] * 100:.1f}%){metadata}\n{result['content']}"
        )
    return "Retrieved Information:\n\n" + "\n\n---\n\n".join(blocks)


class VectorSearchService:
    def __init__(self, session: Session, client: GeminiClient):
        self.session = session
        self.client = client

    @log(
        args_message=lambda a: f'Vector search query="{a["query"]}" limit={a["limit"]} threshold={a["threshold"]}',
        success_message=lambda r, a: f"Vector search completed, found {len(r)} results",
        error_message=lambda e, a: f'Vector search failed for query="{a["query"]}" | Error={e}',
    )
    def search(self, query: str, limit: int = 5, threshold: float = 0.7) -> List[Dict[str, Any]]:
        embedding = self.client.embed(query)
        if not embedding:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="No embeddings generated")

        scored = []
        for document in self.session.exec(select(KnowledgeDocument)).all():
            similarity = cosine_similarity(embedding, document.embedding)
            if similarity >= threshold:
                scored.append(
                    {
                        "id": str(document.id),
                        "content": document.content,
                        "metadata": document.doc_metadata,
                        "similarity": similarity,
                    }
                )
        scored.sort(key=lambda item: item["similarity"], reverse=True)
        return scored[:limit]

    @log(
        args_message=lambda a: f"Generate context from vector search for queries={a['queries']}",
        success_message=False,
    )
    def search_and_format_context(self, queries: List[str], limit: int = 5, threshold: float = 0.7) -> str:
        best: Dict[str, Dict[str, Any]] = {}
        for query in queries:
            for result in self.search(query, limit, threshold):
                current = best.get(result["id"])
                if current is None or result["similarity"] > current["similarity"]:
                    best[result["id"]] = result
        ranked = sorted(best.values(), key=lambda item: item["similarity"], reverse=True)[:limit]
        return format_context(ranked)

    @log(
        args_message=lambda a: f"Adding knowledge document ({len(a['content'])} chars)",
        success_message=lambda r, a: f"Knowledge document [{r.id}] stored",
    )
    def add_document(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> KnowledgeDocument:
        embedding = self.client.embed(content, task_type="retrieval_document")
        if not embedding:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="No embeddings generated")
        document = KnowledgeDocument(content=content, doc_metadata=metadata, embedding=embedding)
        self.session.add(document)
        self.session.commit()
        self.session.refresh(document)
        return document
