"""
Text Generation Client (Gemini)

Thin async wrapper over google-genai with the two calls the companion needs:

- stream_reply: system prompt + message history -> async stream of text deltas
- extract: prompt + response schema -> one JSON document (raw text; callers
  decode it strictly against their own pydantic model)

Every call is bounded by settings.EXTERNAL_API_TIMEOUT. For streams the bound
applies to the wait for each chunk. Any failure, timeout included, surfaces as
TextGenerationError so callers can apply their fail-safe policy.
"""

import asyncio
import logging
from typing import AsyncIterator, Dict, Optional, Sequence, Tuple

from google import genai
from google.genai import types as genai_types

from core.config import settings
from core.exceptions import ExtractionDecodeError, TextGenerationError, TextGenerationTimeout

logger = logging.getLogger(__name__)

EXTRACTION_MAX_OUTPUT_TOKENS = 1024


class TextGenerationClient:
    """Gemini-backed reply streaming and structured extraction."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        reply_model: Optional[str] = None,
        extraction_model: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.GOOGLE_AI_API_KEY
        self.reply_model = reply_model or settings.COMPANION_REPLY_MODEL
        self.extraction_model = extraction_model or settings.COMPANION_EXTRACTION_MODEL
        self.timeout_s = timeout_s or settings.EXTERNAL_API_TIMEOUT
        self._client: Optional[genai.Client] = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self.api_key:
                raise TextGenerationError("GOOGLE_AI_API_KEY is not configured")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    @staticmethod
    def _to_contents(history: Sequence[Tuple[str, str]]):
        contents = []
        for role, content in history:
            contents.append(genai_types.Content(
                role="user" if role == "user" else "model",
                parts=[genai_types.Part(text=content)],
            ))
        return contents

    async def stream_reply(
        self,
        system_prompt: str,
        history: Sequence[Tuple[str, str]],
    ) -> AsyncIterator[str]:
        """Yield reply text chunks. `history` is (role, content) pairs, oldest first."""
        client = self._get_client()
        config = genai_types.GenerateContentConfig(
            system_instruction=system_prompt,
            max_output_tokens=settings.REPLY_MAX_OUTPUT_TOKENS,
            temperature=settings.REPLY_TEMPERATURE,
        )
        try:
            stream = await asyncio.wait_for(
                client.aio.models.generate_content_stream(
                    model=self.reply_model,
                    contents=self._to_contents(history),
                    config=config,
                ),
                timeout=self.timeout_s,
            )
            iterator = stream.__aiter__()
            while True:
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout=self.timeout_s)
                except StopAsyncIteration:
                    break
                text = getattr(chunk, "text", None)
                if text:
                    yield text
        except asyncio.TimeoutError as e:
            logger.warning(f"Reply stream timed out after {self.timeout_s}s")
            raise TextGenerationTimeout(f"Reply generation timed out after {self.timeout_s}s") from e
        except TextGenerationError:
            raise
        except Exception as e:
            logger.error(f"Reply stream failed: {type(e).__name__}: {e}")
            raise TextGenerationError(f"Reply generation failed: {type(e).__name__}") from e

    async def extract(
        self,
        prompt: str,
        response_schema: Dict,
        temperature: float = 0.1,
    ) -> str:
        """Run a structured-extraction call and return the raw JSON text."""
        client = self._get_client()
        config = genai_types.GenerateContentConfig(
            max_output_tokens=EXTRACTION_MAX_OUTPUT_TOKENS,
            temperature=temperature,
            response_mime_type="application/json",
            response_schema=response_schema,
        )
        try:
            response = await asyncio.wait_for(
                client.aio.models.generate_content(
                    model=self.extraction_model,
                    contents=prompt,
                    config=config,
                ),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise TextGenerationTimeout(f"Structured extraction timed out after {self.timeout_s}s") from e
        except Exception as e:
            raise TextGenerationError(f"Structured extraction failed: {type(e).__name__}: {e}") from e

        text = (response.text or "").strip()
        if not text:
            raise ExtractionDecodeError("Structured extraction returned an empty response")
        return text


_default_client: Optional[TextGenerationClient] = None


def get_text_generation_client() -> TextGenerationClient:
    """FastAPI dependency; tests override it with a scripted fake."""
    global _default_client
    if _default_client is None:
        _default_client = TextGenerationClient()
    return _default_client
