from __future__ import annotations

import hashlib
import random
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

import httpx

from eventdesk.config import AIBackend, Settings
from eventdesk.logging import get_logger
from eventdesk.service.errors import ServiceUnavailableError

logger = get_logger(__name__)

EMPTY_QUERY_REPLY = "Please ask a question."
AI_UNAVAILABLE_MESSAGE = "The AI integration is temporarily unavailable."
EMBEDDING_UNAVAILABLE_MESSAGE = "Embedding service unavailable"
CONTEXT_SOURCE = "internal_knowledge"
EMBEDDING_DIMENSIONS = 768


@dataclass(frozen=True)
class HistoryTurn:
    role: str  # "user" or "model"
    content: str


@dataclass
class AIChatRequest:
    query: str
    history: List[HistoryTurn] = field(default_factory=list)
    context_documents: Optional[List[str]] = None


@dataclass
class AIChatResponse:
    text: str
    source_references: List[str] = field(default_factory=list)


class AIResponder(Protocol):
    async def generate_response(self, request: AIChatRequest) -> AIChatResponse: ...

    async def embed_text(self, text: str) -> List[float]: ...


def is_blank(query: Optional[str]) -> bool:
    return not query or not query.strip()


def build_prompt(request: AIChatRequest) -> str:
    """Prefix the query with any context documents."""
    if request.context_documents:
        context = "\n".join(request.context_documents)
        return f"Context: {context}\n\nUser: {request.query}"
    return request.query


class CannedResponder:
    """Deterministic responder used in tests and when no live backend is configured."""

    async def generate_response(self, request: AIChatRequest) -> AIChatResponse:
        if is_blank(request.query):
            return AIChatResponse(text=EMPTY_QUERY_REPLY)
        return AIChatResponse(text=f"Mock AI response to: {request.query}")

    async def embed_text(self, text: str) -> List[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        rng = random.Random(seed)
        return [rng.random() for _ in range(EMBEDDING_DIMENSIONS)]


class GeminiResponder:
    """Live responder backed by the Gemini REST API.

    Upstream failures are logged with their cause and surfaced to callers
    only as a generic :class:`ServiceUnavailableError`.
    """

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gemini-flash-latest",
        embedding_model: str = "embedding-001",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.embedding_model = embedding_model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client for API calls."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=10.0),
                headers={"x-goog-api-key": self.api_key},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def generate_response(self, request: AIChatRequest) -> AIChatResponse:
        if is_blank(request.query):
            return AIChatResponse(text=EMPTY_QUERY_REPLY)

        contents = [
            {"role": turn.role, "parts": [{"text": turn.content}]}
            for turn in request.history
        ]
        contents.append({"role": "user", "parts": [{"text": build_prompt(request)}]})
        try:
            client = await self._get_client()
            response = await client.post(
                f"{self.base_url}/models/{self.model}:generateContent",
                json={"contents": contents},
            )
            response.raise_for_status()
            data = response.json()
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts)
        except httpx.HTTPStatusError as e:
            logger.error(
                "ai_generate_api_error",
                status_code=e.response.status_code,
                error=str(e),
                model=self.model,
            )
            raise ServiceUnavailableError(AI_UNAVAILABLE_MESSAGE) from e
        except httpx.TimeoutException as e:
            logger.error("ai_generate_timeout", model=self.model, timeout=self.timeout)
            raise ServiceUnavailableError(AI_UNAVAILABLE_MESSAGE) from e
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.error(
                "ai_generate_failed",
                model=self.model,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise ServiceUnavailableError(AI_UNAVAILABLE_MESSAGE) from e

        logger.info("ai_generate_success", model=self.model, response_length=len(text))
        return AIChatResponse(
            text=text,
            source_references=[CONTEXT_SOURCE] if request.context_documents else [],
        )

    async def embed_text(self, text: str) -> List[float]:
        try:
            client = await self._get_client()
            response = await client.post(
                f"{self.base_url}/models/{self.embedding_model}:embedContent",
                json={
                    "model": f"models/{self.embedding_model}",
                    "content": {"parts": [{"text": text}]},
                },
            )
            response.raise_for_status()
            values = response.json()["embedding"]["values"]
            return [float(v) for v in values]
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.error(
                "ai_embed_failed",
                model=self.embedding_model,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise ServiceUnavailableError(EMBEDDING_UNAVAILABLE_MESSAGE) from e


def build_ai_responder(settings: Settings) -> AIResponder:
    """Select the responder variant once, at process wiring time."""
    if settings.ai_backend == AIBackend.GEMINI:
        if not settings.gemini_api_key:
            logger.warning("ai_gemini_no_api_key", fallback="canned")
            return CannedResponder()
        return GeminiResponder(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            embedding_model=settings.gemini_embedding_model,
            base_url=settings.gemini_base_url,
            timeout=settings.ai_timeout_seconds,
        )
    return CannedResponder()
