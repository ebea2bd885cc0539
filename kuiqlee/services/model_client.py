"""
Model API Client - Thin httpx client for the Anthropic Messages API.

Only transport and error typing live here; prompt construction belongs to the
extension. Upstream failures surface as the ModelProviderError family.
"""

from dataclasses import dataclass

import httpx
from structlog import get_logger

from kuiqlee.config import Settings
from kuiqlee.exceptions import (
    ModelMalformedResponseError,
    ModelOverloadedError,
    ModelProviderError,
    ModelRateLimitedError,
    ModelUnauthorizedError,
    ProviderNotConfiguredError,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class Completion:
    """Text returned by the model plus token usage."""

    text: str
    input_tokens: int
    output_tokens: int


class ModelClient:
    """
    Sends single-turn prompts to the model API.

    The httpx client is owned by the caller (created at startup, closed on
    shutdown) so connections are pooled across requests.
    """

    def __init__(self, http: httpx.AsyncClient, settings: Settings) -> None:
        self.http = http
        self.api_key = settings.model_api_key
        self.api_url = settings.model_api_url
        self.api_version = settings.model_api_version
        self.model = settings.model_name
        self.default_max_tokens = settings.model_max_tokens
        self.default_temperature = settings.model_temperature
        self.timeout = settings.model_timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def complete(
        self,
        prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> Completion:
        """
        Send one user prompt and return the first text block.

        Raises:
            ProviderNotConfiguredError: No API key configured
            ModelUnauthorizedError: 401 or 402 (bad key or quota exhausted)
            ModelRateLimitedError: 429
            ModelOverloadedError: Any other upstream failure, including timeouts
            ModelMalformedResponseError: 2xx without a usable text block
        """
        if not self.configured:
            raise ProviderNotConfiguredError("Model API")

        body = {
            "model": self.model,
            "max_tokens": max_tokens or self.default_max_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.default_temperature if temperature is None else temperature,
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }

        try:
            response = await self.http.post(
                self.api_url, json=body, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException as exc:
            logger.warning("model_api_timeout", timeout=self.timeout)
            raise ModelOverloadedError("AI service timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("model_api_request_failed", error=str(exc))
            raise ModelOverloadedError("AI service temporarily unavailable") from exc

        if response.status_code >= 400:
            raise self._error_for(response)

        try:
            data = response.json()
            text = data["content"][0]["text"]
            usage = data.get("usage") or {}
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            logger.error("model_api_response_malformed", status_code=response.status_code)
            raise ModelMalformedResponseError(
                "Invalid response from AI service", response.status_code
            ) from exc

        if not isinstance(text, str) or not text:
            raise ModelMalformedResponseError(
                "Invalid response from AI service", response.status_code
            )

        return Completion(
            text=text,
            input_tokens=int(usage.get("input_tokens", 0)),
            output_tokens=int(usage.get("output_tokens", 0)),
        )

    @staticmethod
    def _error_for(response: httpx.Response) -> ModelProviderError:
        status = response.status_code
        logger.error("model_api_error", status_code=status, body=response.text[:500])

        if status == 401:
            return ModelUnauthorizedError("API authentication failed", status)
        if status == 402:
            return ModelUnauthorizedError("API quota exceeded", status)
        if status == 429:
            return ModelRateLimitedError("Rate limit exceeded. Please try again later.", status)
        return ModelOverloadedError("AI service temporarily unavailable", status)
