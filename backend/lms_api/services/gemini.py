import logging
from typing import List, Optional

import google.generativeai as genai
from google.api_core.exceptions import GoogleAPIError
from fastapi import HTTPException, status

from ..config import ChatbotSettings, settings


logger = logging.getLogger(__name__)


class GeminiClient:
    """Thin wrapper over ``google.generativeai`` for embeddings and text generation."""

    def __init__(self, chatbot_settings: Optional[ChatbotSettings] = None):
        self.settings = chatbot_settings or settings.chatbot
        self._configured = False

    def _configure(self) -> None:
        if not self.settings.gemini_api_key:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Gemini API key is not configured",
            )
        if not self._configured:
            genai.configure(api_key=self.settings.gemini_api_key)
            self._configured = True

    def embed(self, text: str, task_type: str = "retrieval_query") -> List[float]:
        self._configure()
        try:
            result = genai.embed_content(model=self.settings.embedding_model, content=text, task_type=task_type)
        except GoogleAPIError as exc:
            logger.error("Gemini embedding request failed: %s", exc)
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Embedding service unavailable") from exc
        return list(result.get("embedding") or [])

    def generate(self, prompt: str) -> str:
        self._configure()
        model = genai.GenerativeModel(self.settings.chat_model)
        try:
            response = model.generate_content(prompt)
        except GoogleAPIError as exc:
            logger.error("Gemini generation request failed: %s", exc)
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="No response from Gemini") from exc
        try:
            text = response.text
        except ValueError:
            # Blocked candidates carry no text part
            return ""
        return (text or "").strip()


def get_gemini_client() -> GeminiClient:
    return GeminiClient()
