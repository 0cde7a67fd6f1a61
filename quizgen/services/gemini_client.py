import asyncio
import logging
from typing import Any, Optional

import httpx

from quizgen.errors import GenerationError, GenerationErrorKind
from quizgen.schemas import QuizPrompt, RawModelResponse

logger = logging.getLogger(__name__)


def unwrap_envelope(payload: Any) -> str:
    """Pull candidates[0].content.parts[0].text out of a generateContent response"""
    node = payload
    for step in ("candidates", 0, "content", "parts", 0, "text"):
        if isinstance(step, int):
            if not isinstance(node, list) or len(node) <= step:
                raise GenerationError(
                    GenerationErrorKind.MALFORMED_ENVELOPE, f"missing item {step} in response envelope"
                )
        elif not isinstance(node, dict) or step not in node:
            raise GenerationError(
                GenerationErrorKind.MALFORMED_ENVELOPE, f"missing '{step}' in response envelope"
            )
        node = node[step]

    if not isinstance(node, str):
        raise GenerationError(GenerationErrorKind.MALFORMED_ENVELOPE, "generated text is not a string")
    return node


class QuizGenerationClient:
    """Calls the Gemini generateContent endpoint; the only component doing network I/O"""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ValueError("Gemini API key is not configured")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http_client = http_client

    @property
    def url(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    async def generate(
        self, prompt: QuizPrompt, cancel_event: Optional[asyncio.Event] = None
    ) -> RawModelResponse:
        request = asyncio.ensure_future(self._post(prompt.text))
        waiters = {request}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=self.timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            pending = [task for task in waiters if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if request in done:
            return request.result()
        if cancel_waiter is not None and cancel_waiter in done:
            logger.info("Gemini request cancelled by caller")
            raise GenerationError(GenerationErrorKind.CANCELLED, "request cancelled by caller")

        logger.error(f"Gemini request timed out after {self.timeout} seconds")
        raise GenerationError(
            GenerationErrorKind.TIMEOUT, f"no response within {self.timeout} seconds"
        )

    async def _post(self, text: str) -> RawModelResponse:
        body = {"contents": [{"parts": [{"text": text}]}]}
        headers = {"x-goog-api-key": self.api_key}

        logger.info(f"Sending prompt to Gemini model '{self.model}' (prompt length: {len(text)})")
        try:
            if self.http_client is not None:
                response = await self.http_client.post(self.url, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise GenerationError(GenerationErrorKind.TIMEOUT, str(e) or "request timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Cannot reach Gemini at {self.base_url}: {e}")
            raise GenerationError(GenerationErrorKind.TRANSPORT, str(e) or type(e).__name__) from e

        if not response.is_success:
            logger.error(f"Gemini returned an error: {response.status_code} {response.text[:200]}")
            raise GenerationError(
                GenerationErrorKind.HTTP_STATUS,
                response.reason_phrase or "request failed",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise GenerationError(
                GenerationErrorKind.MALFORMED_ENVELOPE, "response body is not JSON"
            ) from e

        text = unwrap_envelope(payload)
        logger.info(f"Gemini response received ({len(text)} chars)")
        return RawModelResponse(text=text)
