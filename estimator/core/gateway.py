"""LLM Gateway: retrying proxy in front of the configured provider.

Wraps any LlamaIndex LLM as a CustomLLM subclass so estimate generation
gets exponential-backoff retry on provider throttling and one log line per
call with its latency.

Streaming calls retry only the request itself; once tokens have been
delivered a failure propagates to the consumer.
"""

import logging
import time
from typing import Any, AsyncGenerator, Generator

import backoff
from llama_index.core.base.llms.types import CompletionResponse, LLMMetadata
from llama_index.core.llms import CustomLLM

logger = logging.getLogger(__name__)

MAX_TRIES = 3
MAX_TIME = 60


def _get_retryable_exceptions():
    """Throttling errors of whichever provider SDKs are installed."""
    exceptions = [TimeoutError, ConnectionError]
    try:
        from openai import RateLimitError as OpenAIRateLimit
        exceptions.append(OpenAIRateLimit)
    except ImportError:
        pass
    try:
        from anthropic import RateLimitError as AnthropicRateLimit
        exceptions.append(AnthropicRateLimit)
    except ImportError:
        pass
    try:
        from google.api_core.exceptions import ServiceUnavailable, TooManyRequests
        exceptions.extend([TooManyRequests, ServiceUnavailable])
    except ImportError:
        pass
    return tuple(exceptions)


class LLMGateway(CustomLLM):
    """Provider-agnostic LLM with retry.

    Usage:
        from estimator.core.gateway import LLMGateway
        gateway = LLMGateway(EstimatorModel.set())
    """

    _llm: Any = None
    _max_tries: int = MAX_TRIES
    _max_time: float = MAX_TIME
    _retry_factor: float = 1.0
    _retryable_exceptions: tuple = None

    def __init__(
        self,
        llm: Any,
        max_tries: int = MAX_TRIES,
        max_time: float = MAX_TIME,
        retry_factor: float = 1.0,
        **kwargs,
    ):
        super().__init__(**kwargs)
        # CustomLLM is a pydantic model; private attrs bypass field validation
        object.__setattr__(self, "_llm", llm)
        object.__setattr__(self, "_max_tries", max_tries)
        object.__setattr__(self, "_max_time", max_time)
        object.__setattr__(self, "_retry_factor", retry_factor)
        object.__setattr__(self, "_retryable_exceptions", None)
        logger.info(
            f"LLMGateway initialized for {type(llm).__name__}"
            f" (model={getattr(llm, 'model', 'unknown')})"
        )

    @property
    def metadata(self) -> LLMMetadata:
        return self._llm.metadata

    @property
    def model(self) -> str:
        return getattr(self._llm, "model", "unknown")

    # ── Completion ────────────────────────────────────────────────────

    def complete(
        self, prompt: str, formatted: bool = False, **kwargs: Any
    ) -> CompletionResponse:
        t0 = time.time()
        try:
            response = self._retry_call(
                self._llm.complete, prompt, formatted=formatted, **kwargs
            )
        except Exception:
            self._log_failure("complete", t0)
            raise
        self._log_call("complete", t0, len(response.text or ""))
        return response

    async def acomplete(
        self, prompt: str, formatted: bool = False, **kwargs: Any
    ) -> CompletionResponse:
        t0 = time.time()
        try:
            response = await self._aretry_call(
                self._llm.acomplete, prompt, formatted=formatted, **kwargs
            )
        except Exception:
            self._log_failure("acomplete", t0)
            raise
        self._log_call("acomplete", t0, len(response.text or ""))
        return response

    # ── Streaming ─────────────────────────────────────────────────────

    def stream_complete(
        self, prompt: str, formatted: bool = False, **kwargs: Any
    ) -> Generator[CompletionResponse, None, None]:
        t0 = time.time()
        received = 0
        try:
            for token in self._llm.stream_complete(prompt, formatted=formatted, **kwargs):
                received += len(token.delta or "")
                yield token
        except Exception:
            self._log_failure("stream_complete", t0)
            raise
        self._log_call("stream_complete", t0, received)

    async def astream_complete(
        self, prompt: str, formatted: bool = False, **kwargs: Any
    ) -> AsyncGenerator[CompletionResponse, None]:
        """Open the provider stream (with retry) and relay its tokens."""
        t0 = time.time()
        try:
            stream = await self._aretry_call(
                self._llm.astream_complete, prompt, formatted=formatted, **kwargs
            )
        except Exception:
            self._log_failure("astream_complete", t0)
            raise

        async def gen() -> AsyncGenerator[CompletionResponse, None]:
            received = 0
            try:
                async for token in stream:
                    received += len(token.delta or "")
                    yield token
            except Exception:
                self._log_failure("astream_complete", t0)
                raise
            self._log_call("astream_complete", t0, received)

        return gen()

    # ── Retry ─────────────────────────────────────────────────────────

    def _retryable(self) -> tuple:
        if self._retryable_exceptions is None:
            object.__setattr__(
                self, "_retryable_exceptions", _get_retryable_exceptions()
            )
        return self._retryable_exceptions

    def _retry_call(self, fn, *args, **kwargs):
        @backoff.on_exception(
            backoff.expo,
            self._retryable(),
            max_tries=self._max_tries,
            max_time=self._max_time,
            on_backoff=self._on_retry,
            factor=self._retry_factor,
        )
        def _do_call():
            return fn(*args, **kwargs)

        return _do_call()

    async def _aretry_call(self, fn, *args, **kwargs):
        @backoff.on_exception(
            backoff.expo,
            self._retryable(),
            max_tries=self._max_tries,
            max_time=self._max_time,
            on_backoff=self._on_retry,
            factor=self._retry_factor,
        )
        async def _do_call():
            return await fn(*args, **kwargs)

        return await _do_call()

    def _on_retry(self, details: dict):
        logger.warning(
            f"LLMGateway retry {details['tries']}/{self._max_tries} "
            f"after {details['wait']:.1f}s: {type(details.get('exception')).__name__}"
        )

    # ── Logging ───────────────────────────────────────────────────────

    def _log_call(self, method: str, t0: float, chars: int):
        latency_ms = (time.time() - t0) * 1000
        logger.debug(
            f"LLM {method}: model={self.model} chars={chars} latency={latency_ms:.0f}ms"
        )

    def _log_failure(self, method: str, t0: float):
        latency_ms = (time.time() - t0) * 1000
        logger.error(f"LLM {method} failed: model={self.model} after {latency_ms:.0f}ms")

    @classmethod
    def class_name(cls) -> str:
        return "LLMGateway"
