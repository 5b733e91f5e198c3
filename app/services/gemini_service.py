"""
Viewfinder: GeminiService, the embedding client

Turns content into fixed-length vectors in one shared space:

- Text (choice labels, photographer descriptions, free-text quiz answers) is
  embedded directly with the Gemini embedding model.
- Images are first described by a Gemini vision model, with the editor's
  label as context, and the description is then embedded with the same text
  model.  Image and text vectors are therefore directly comparable.

Every remote call goes through a tenacity retry on transient errors (429 /
5xx) and walks a model fallback chain before giving up.

Model fallback chains:
    embeddings: text-embedding-004 -> embedding-001
    vision:     gemini-2.5-flash -> gemini-2.0-flash
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

import google.generativeai as genai
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.config import get_settings
from app.utils.storage import fetch_image_bytes

logger = structlog.get_logger("viewfinder.gemini")

EMBEDDING_TASK_TYPE = "semantic_similarity"

_IMAGE_DESCRIPTION_PROMPT = (
    "You are helping match clients with photographers. Describe this "
    "photograph in 3-5 sentences, focusing on mood, emotional tone, lighting, "
    "colour palette, composition and the kind of moment it captures. Do not "
    "speculate about the identity of anyone pictured."
)


def _is_retryable_api_error(exc: BaseException) -> bool:
    """Return True if the exception signals a retryable Gemini API error.

    We retry on HTTP 429 (rate limit) and 500/503 (server-side transient)
    errors.  The google-generativeai SDK wraps these as various exception
    types, so we inspect both the type name and string representation.
    """
    exc_str = str(exc).lower()
    exc_type = type(exc).__name__.lower()

    if "429" in exc_str or "resource_exhausted" in exc_str:
        return True
    if "500" in exc_str or "503" in exc_str or "internal" in exc_str:
        return True
    if "resourceexhausted" in exc_type or "serviceunavailable" in exc_type:
        return True

    return False


class GeminiService:
    """Embedding client over the Gemini API.

    Returned vectors always have ``EMBEDDING_DIM`` components; anything else
    is treated as a failed call so malformed vectors never reach storage.
    """

    def __init__(
        self,
        image_fetcher: Optional[Callable[[str], Awaitable[tuple[bytes, str]]]] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        """Configure the Gemini SDK and both model chains.

        Parameters
        ----------
        image_fetcher:
            Coroutine resolving an image reference to ``(bytes, mime_type)``.
            Defaults to :func:`app.utils.storage.fetch_image_bytes`.
        max_attempts:
            Retry attempts per model; defaults to
            ``EMBEDDING_MAX_RETRY_ATTEMPTS``.
        """
        settings = get_settings()

        genai.configure(api_key=settings.GEMINI_API_KEY)

        self._dim = settings.EMBEDDING_DIM
        self._max_attempts = max_attempts or settings.EMBEDDING_MAX_RETRY_ATTEMPTS
        self._image_fetcher = image_fetcher or fetch_image_bytes

        self._embedding_chain: list[str] = [
            settings.GEMINI_EMBEDDING_MODEL,
            settings.GEMINI_EMBEDDING_MODEL_FALLBACK,
        ]
        self._vision_chain: list[str] = [
            settings.GEMINI_VISION_MODEL_PRIMARY,
            settings.GEMINI_VISION_MODEL_FALLBACK,
        ]

        self._generation_config = genai.GenerationConfig(
            max_output_tokens=512,
            temperature=0.2,
        )

        logger.info(
            "gemini_service_initialised",
            embedding_chain=self._embedding_chain,
            vision_chain=self._vision_chain,
            dim=self._dim,
        )

    @property
    def dim(self) -> int:
        return self._dim

    # ══════════════════════════════════════════════════════════════════
    # Public API
    # ══════════════════════════════════════════════════════════════════

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one request.

        The result is index-aligned with ``texts``.

        Raises
        ------
        ValueError
            If any text is blank or a returned vector has the wrong length.
        Exception
            The last API error once every model in the chain has failed.
        """
        if not texts:
            return []
        for text in texts:
            if not text or not text.strip():
                raise ValueError("Cannot embed empty text")

        payload: Any = texts[0] if len(texts) == 1 else list(texts)
        response = await self._with_model_fallback(
            self._embedding_chain,
            lambda model: self._call_embed(model, payload),
            operation="embed_texts",
        )

        raw = response["embedding"]
        vectors = [raw] if len(texts) == 1 else list(raw)
        if len(vectors) != len(texts):
            raise ValueError(
                f"Embedding count mismatch: sent {len(texts)}, got {len(vectors)}"
            )
        return [self._validated(v) for v in vectors]

    async def embed_text(self, text: str) -> list[float]:
        vectors = await self.embed_texts([text])
        return vectors[0]

    async def describe_image(
        self,
        image_bytes: bytes,
        mime_type: str,
        context: str = "",
    ) -> str:
        """Ask the vision model for a matching-oriented image description."""
        prompt = _IMAGE_DESCRIPTION_PROMPT
        if context:
            prompt += f"\n\nThe editor labelled this image as:\n{context}"
        parts = [prompt, {"mime_type": mime_type, "data": image_bytes}]

        async def _call(model_name: str) -> str:
            model = genai.GenerativeModel(model_name)
            response = await model.generate_content_async(
                parts, generation_config=self._generation_config
            )
            if not response.candidates:
                raise ValueError(
                    f"Gemini returned no candidates for model {model_name}. "
                    f"Prompt feedback: {response.prompt_feedback}"
                )
            text = response.text
            if not text or not text.strip():
                raise ValueError(f"Gemini returned empty text for model {model_name}")
            return text.strip()

        return await self._with_model_fallback(
            self._vision_chain, _call, operation="describe_image"
        )

    async def embed_image(self, image_url: str, context: str = "") -> list[float]:
        """Fetch, describe and embed an image.

        ``context`` (label and editor description) is folded into both the
        vision prompt and the embedded text.
        """
        image_bytes, mime_type = await self._image_fetcher(image_url)
        if not image_bytes:
            raise ValueError(f"Image at {image_url} is empty")

        description = await self.describe_image(image_bytes, mime_type, context)
        text = f"{context}\n{description}" if context else description

        logger.debug(
            "image_described",
            image_url=image_url,
            description_length=len(description),
        )
        return await self.embed_text(text)

    # ══════════════════════════════════════════════════════════════════
    # Internals
    # ══════════════════════════════════════════════════════════════════

    def _validated(self, vector: Any) -> list[float]:
        values = [float(x) for x in vector]
        if len(values) != self._dim:
            raise ValueError(
                f"Embedding has {len(values)} dimensions, expected {self._dim}"
            )
        return values

    async def _call_embed(self, model_name: str, content: Any) -> dict:
        # genai.embed_content is blocking; keep it off the event loop.
        return await asyncio.to_thread(
            genai.embed_content,
            model=model_name,
            content=content,
            task_type=EMBEDDING_TASK_TYPE,
        )

    async def _with_model_fallback(
        self,
        chain: list[str],
        call: Callable[[str], Awaitable[Any]],
        operation: str,
    ) -> Any:
        last_exception: Exception | None = None

        for model_name in chain:
            try:
                return await self._call_with_retry(model_name, call)
            except Exception as exc:
                last_exception = exc
                logger.warning(
                    "gemini_model_failed",
                    operation=operation,
                    model=model_name,
                    error=str(exc),
                )

        raise RuntimeError(
            f"All Gemini models failed for {operation}. Last error: {last_exception}"
        ) from last_exception

    async def _call_with_retry(
        self,
        model_name: str,
        call: Callable[[str], Awaitable[Any]],
    ) -> Any:
        """Call one model with exponential backoff on transient errors."""
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_retryable_api_error),
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=1, min=1, max=60, exp_base=2),
                reraise=True,
            ):
                with attempt:
                    logger.debug(
                        "gemini_call_attempt",
                        model=model_name,
                        attempt_number=attempt.retry_state.attempt_number,
                    )
                    return await call(model_name)
        except RetryError as retry_err:
            logger.error(
                "gemini_retry_exhausted",
                model=model_name,
                attempts=self._max_attempts,
                last_error=str(retry_err.last_attempt.exception()),
            )
            raise retry_err.last_attempt.exception() from retry_err
