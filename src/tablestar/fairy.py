"""Math fairy chat assistant backed by Gemini."""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from .models import ChatMessage

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"
USER_ROLE = "user"
FAIRY_ROLE = "fairy"

SYSTEM_INSTRUCTION = (
    "You are the Multiplication Fairy, a math helper for children aged 6 to 10. "
    "Answer playfully and use lively comparisons with apples, candies or stars. "
    "Keep explanations simple and under 100 words. Praise the child often."
)
GREETING = (
    "Hi there! I'm the Multiplication Fairy. Want to learn a little multiplication secret? "
    'Try asking "why is 2 x 3 equal to 6?"'
)
DISTRACTED_REPLY = "Oops, the fairy got a little distracted just now. Could you ask me again?"
BUSY_REPLY = "The network planet is a bit crowded right now. Ask me again in a moment!"


class ContentClient(Protocol):
    def generate_content(self, contents: str) -> Any: ...


class GeminiClient:
    """Bind a ``google.genai`` client to one model and the fairy persona."""

    def __init__(self, api_key: str, model_name: str) -> None:
        self._client = genai.Client(api_key=api_key)
        self._model_name = model_name
        self._config = genai_types.GenerateContentConfig(system_instruction=SYSTEM_INSTRUCTION)

    def generate_content(self, contents: str) -> Any:
        return self._client.models.generate_content(model=self._model_name, contents=contents, config=self._config)


class FairyAssistant:
    """Chat transcript plus one in-flight question at a time."""

    def __init__(self, api_key: str, model_name: str = DEFAULT_MODEL, client: ContentClient | None = None) -> None:
        if client is None:
            client = GeminiClient(api_key, model_name)
        self.model_name = model_name
        self._client = client
        self._messages: list[ChatMessage] = [ChatMessage(role=FAIRY_ROLE, text=GREETING)]
        self._in_flight = threading.Lock()

    @property
    def transcript(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    @property
    def loading(self) -> bool:
        return self._in_flight.locked()

    def ask(self, text: str) -> ChatMessage | None:
        """Send one question and return the fairy's reply.

        Blank questions, and questions sent while another is still being
        answered, are ignored and return None.
        """
        question = text.strip()
        if not question:
            return None
        if not self._in_flight.acquire(blocking=False):
            return None
        try:
            self._messages.append(ChatMessage(role=USER_ROLE, text=question))
            reply = ChatMessage(role=FAIRY_ROLE, text=self._reply_text(question))
            self._messages.append(reply)
            return reply
        finally:
            self._in_flight.release()

    def _reply_text(self, question: str) -> str:
        try:
            response = self._client.generate_content(question)
            text = response.text
        except (genai_errors.APIError, OSError):
            logger.exception("Math fairy request failed (model %s)", self.model_name)
            return BUSY_REPLY
        except Exception:
            logger.exception("Unexpected error from math fairy (model %s)", self.model_name)
            return BUSY_REPLY
        if not text or not text.strip():
            # Blocked or empty candidates come back without text.
            logger.warning("Math fairy returned no text for %r", question)
            return DISTRACTED_REPLY
        return text.strip()
