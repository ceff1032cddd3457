"""Narrow LLM interface used by the estimator core.

``generate`` returns the full text of one completion; ``generate_stream``
yields text fragments as the provider produces them. Provider exceptions
are translated into the estimator error taxonomy.
"""

import logging
from typing import Any, AsyncIterator

from ..exceptions import (
    ConnectionClosedError,
    EstimatorError,
    ProviderAuthError,
    QuotaExceededError,
    RateLimitError,
    StreamTimeoutError,
)
from ..streaming.errors import classify_error

logger = logging.getLogger(__name__)

_ERROR_TYPES = {
    "QUOTA_EXCEEDED": QuotaExceededError,
    "RATE_LIMIT": RateLimitError,
    "TIMEOUT": StreamTimeoutError,
    "AUTH_FAILED": ProviderAuthError,
    "CONNECTION_CLOSED": ConnectionClosedError,
}


def translate_provider_error(error: Exception) -> EstimatorError:
    """Wrap a provider exception in the matching ``EstimatorError``."""
    if isinstance(error, EstimatorError):
        return error
    code = classify_error(error)
    error_type = _ERROR_TYPES.get(code)
    if error_type is not None:
        return error_type(str(error) or error_type.error)
    return EstimatorError(
        f"AI provider request failed: {error}",
        code="UNKNOWN",
        status_code=502,
    )


class LLMClient:
    """Adapter over a LlamaIndex LLM (normally the ``LLMGateway``)."""

    def __init__(self, llm: Any):
        self.llm = llm

    async def generate(self, prompt: str) -> str:
        try:
            response = await self.llm.acomplete(prompt)
        except Exception as e:
            logger.error(f"LLM generate failed: {e}")
            raise translate_provider_error(e) from e
        return response.text or ""

    async def generate_stream(self, prompt: str) -> AsyncIterator[str]:
        try:
            stream = await self.llm.astream_complete(prompt)
            async for token in stream:
                if token.delta:
                    yield token.delta
        except Exception as e:
            logger.error(f"LLM stream failed: {e}")
            raise translate_provider_error(e) from e
