"""Async chat-completions client for the OpenRouter-compatible provider API.

Performs exactly one request/response cycle per call. Retries and key
rotation belong to :class:`~study_summarizer.llm.summarizer.Summarizer`.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Literal, TypedDict

import httpx

from study_summarizer.config import Settings, get_settings
from study_summarizer.logging import get_logger

log = get_logger("study_summarizer.llm.client")

# Statuses that point at the credential itself rather than the request.
CREDENTIAL_ERROR_STATUSES = frozenset({401, 402, 429})


class ChatMessage(TypedDict):
    """A role-tagged message sent to the provider."""

    role: Literal["system", "user", "assistant"]
    content: str


class ProviderError(Exception):
    """The provider call failed.

    Attributes:
        message: Human-readable error text.
        code: Provider error code, when the payload carried one.
        status: HTTP status, when the transport reported a failure status.
    """

    def __init__(self, message: str, code: str | None = None, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status

    @property
    def is_credential_error(self) -> bool:
        """True for 401/402/429, which call for switching keys."""
        return self.status in CREDENTIAL_ERROR_STATUSES

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429


class CompletionClient:
    """Sends chat-completion requests with a caller-supplied API key."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        timeout: float | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Provider URL, headers, and sampling parameters. Defaults
                to the process settings.
            timeout: Request timeout in seconds. ``None`` leaves requests
                unbounded so the caller's own deadline applies.
        """
        self._settings = settings or get_settings()
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def model(self) -> str:
        return self._settings.completion_model

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers={
                    "Content-Type": "application/json",
                    "HTTP-Referer": self._settings.site_url,
                    "X-Title": self._settings.app_title,
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def complete(self, api_key: str, messages: Sequence[ChatMessage]) -> str:
        """Run one chat completion and return the first choice's text.

        Args:
            api_key: Plaintext provider credential.
            messages: Ordered role-tagged messages.

        Returns:
            The content of the first returned choice.

        Raises:
            ProviderError: On transport failure, a non-2xx status (``status``
                set), an error object in the payload (``code`` set), or a
                payload without choices.
        """
        payload: dict[str, Any] = {
            "model": self._settings.completion_model,
            "messages": list(messages),
            "temperature": self._settings.completion_temperature,
            "max_tokens": self._settings.completion_max_tokens,
        }
        client = await self._get_client()

        try:
            response = await client.post(
                self._settings.chat_completions_url,
                json=payload,
                headers={"Authorization": f"Bearer {api_key}"},
            )
        except httpx.RequestError as e:
            log.error("completion_request_failed", error=str(e))
            raise ProviderError(f"Request failed: {e}") from e

        if not response.is_success:
            message, code = _error_details(response)
            log.error("completion_http_error", status=response.status_code, message=message)
            raise ProviderError(message, code=code, status=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError("Provider returned a non-JSON response") from e
        if not isinstance(data, dict):
            raise ProviderError("Provider response was not a JSON object")

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            raise ProviderError(
                message or "Provider returned an error",
                code=str(code) if code is not None else None,
            )

        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ProviderError("No response from provider")

        message_obj = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message_obj.get("content") if isinstance(message_obj, dict) else None
        if not isinstance(content, str):
            raise ProviderError("Provider response missing message content")
        return content


def _error_details(response: httpx.Response) -> tuple[str, str | None]:
    """Pull ``error.message`` / ``error.code`` out of a failure body if present."""
    message = f"Provider API error: {response.status_code}"
    code: str | None = None
    try:
        body = response.json()
    except ValueError:
        return message, code
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        if error.get("message"):
            message = str(error["message"])
        if error.get("code") is not None:
            code = str(error["code"])
    return message, code
