import logging
from typing import List, Optional, Protocol

import openai
from openai import AsyncOpenAI

from ..errors import (
    AuthFailure,
    BadRequest,
    GenericHttpError,
    MalformedResponse,
    RateLimited,
    TransportFailure,
)
from ..models import Message
from ..settings import Settings, get_settings

logger = logging.getLogger(__name__)

PROBE_MESSAGE = "Say 'Hello' if you receive this."


class Transport(Protocol):
    """One stateless request/response exchange with the completion endpoint."""

    async def send_messages(
        self,
        messages: List[Message],
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> str: ...


def _bad_request_hint(message: str) -> str:
    lowered = message.lower()
    if "credit" in lowered or "balance" in lowered:
        return "API credit/balance issue. Check your provider account."
    return "Token limit exceeded? Try the streaming strategy or reduce the context."


def classify_status_error(error: openai.APIStatusError) -> TransportFailure:
    """Map an HTTP status error from the SDK onto the delivery error taxonomy."""
    status = error.status_code
    detail = error.message or str(error)
    if status == 401:
        return AuthFailure(f"Authentication failed: {detail}", status_code=status)
    if status == 429:
        return RateLimited(f"Rate limit exceeded, wait and try again: {detail}", status_code=status)
    if status == 400:
        return BadRequest(f"Bad request: {detail}. {_bad_request_hint(detail)}", status_code=status)
    return GenericHttpError(f"HTTP error {status}: {detail}", status_code=status)


class OpenAITransport:
    """Transport backed by an OpenAI-compatible chat completions endpoint."""

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings or get_settings()
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._settings.openai_api_key:
                raise AuthFailure("API key not configured (set OPENAI_API_KEY)")
            self._client = AsyncOpenAI(
                api_key=self._settings.openai_api_key,
                base_url=self._settings.openai_base_url,
                timeout=self._settings.request_timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def send_messages(
        self,
        messages: List[Message],
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Send ``messages`` and return the reply text.

        Raises:
            TransportFailure: network/timeout, or a classified HTTP status
            MalformedResponse: the reply carries no text
        """
        settings = self._settings
        client = self._get_client()
        total_chars = sum(len(m.content) for m in messages)
        logger.info(
            "Sending request with %d messages, %d total characters",
            len(messages),
            total_chars,
        )

        try:
            response = await client.chat.completions.create(
                model=settings.model,
                messages=[m.to_dict() for m in messages],
                max_tokens=max_tokens or settings.max_tokens,
                temperature=temperature if temperature is not None else settings.temperature,
                timeout=timeout or settings.request_timeout_seconds,
            )
        except openai.APIStatusError as e:
            failure = classify_status_error(e)
            logger.error("Completion request failed (%s): %s", failure.kind.value, failure.message)
            raise failure from e
        except openai.APIConnectionError as e:
            logger.error("Completion request could not reach the endpoint: %s", e)
            raise TransportFailure(f"Request failed: {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            logger.error("Unexpected response format: %r", response)
            raise MalformedResponse(f"Unexpected response format: {e}") from e
        if content is None:
            raise MalformedResponse("Response contained no text content")

        logger.debug("Response received successfully (%d characters)", len(content))
        return content

    async def check_connection(self) -> bool:
        """Send a tiny probe request; True when the endpoint answers."""
        try:
            reply = await self.send_messages(
                [Message(role="user", content=PROBE_MESSAGE)],
                max_tokens=64,
                timeout=30,
            )
        except (TransportFailure, MalformedResponse) as e:
            logger.warning("API check failed: %s", e)
            return False
        logger.info("API check successful: %s", reply[:200])
        return True
