"""LLM stream consumer.

Drives the provider's token stream and republishes it as a lazy, finite
sequence of typed events::

    ai_start -> progress(request) -> (chunk, progress, [partial])* -> ai_complete -> complete

On failure an ``error`` event is yielded and the exception is raised to the
caller on the next pull. The full text is normalized exactly once, after
the provider stream ends.

A consumer instance is single-use; ``raw_text`` and ``result`` hold the
outcome once the sequence is exhausted.
"""

import logging
import time
from typing import Any, AsyncIterator, Optional

from ..constants import PARTIAL_MIN_LENGTH
from ..exceptions import EstimatorError
from ..streaming.errors import classify_error
from ..streaming.events import (
    AICompleteEvent,
    AIStartEvent,
    ChunkEvent,
    CompleteEvent,
    ErrorEvent,
    PartialEvent,
    ProgressEvent,
    StreamEvent,
)
from .client import LLMClient
from .partial import extract_partial_fields
from .response_parser import MODE_MARKUP, EstimateMarkup, normalize_response

logger = logging.getLogger(__name__)


class StreamConsumer:
    """Turns one streamed completion into stream events."""

    def __init__(self, llm_client: LLMClient, partial_min_length: int = PARTIAL_MIN_LENGTH):
        self.llm_client = llm_client
        self.partial_min_length = partial_min_length
        self.raw_text = ""
        self.result: Any = None
        self.chunk_count = 0
        self._started = False

    async def run(self, prompt: str, mode: str = MODE_MARKUP) -> AsyncIterator[StreamEvent]:
        if self._started:
            raise RuntimeError("StreamConsumer.run() can only be consumed once")
        self._started = True

        t0 = time.time()
        last_partial: Optional[dict] = None

        yield AIStartEvent()
        yield ProgressEvent(stage="request", message="Sending request to AI model...")

        try:
            async for fragment in self.llm_client.generate_stream(prompt):
                self.chunk_count += 1
                self.raw_text += fragment
                total_length = len(self.raw_text)

                yield ChunkEvent(
                    content=fragment,
                    chunk_number=self.chunk_count,
                    total_length=total_length,
                )
                yield ProgressEvent(
                    stage="streaming",
                    message=f"Received chunk {self.chunk_count}",
                    chunk_count=self.chunk_count,
                    accumulated_length=total_length,
                    latest_chunk=fragment[:100],
                )

                partial = extract_partial_fields(self.raw_text, self.partial_min_length)
                if partial is not None:
                    data = partial.to_dict()
                    if data != last_partial:
                        last_partial = data
                        yield PartialEvent(data=data)

            yield AICompleteEvent(
                chunk_count=self.chunk_count,
                total_length=len(self.raw_text),
                duration_ms=int((time.time() - t0) * 1000),
            )

            self.result = normalize_response(self.raw_text, mode)
        except Exception as e:
            logger.error(f"Stream generation failed after {self.chunk_count} chunks: {e}")
            recoverable = e.recoverable if isinstance(e, EstimatorError) else False
            message = e.message if isinstance(e, EstimatorError) else str(e)
            yield ErrorEvent(
                error=message,
                code=classify_error(e),
                recoverable=recoverable,
                details=getattr(e, "details", None),
            )
            raise

        payload = self.result.to_dict() if isinstance(self.result, EstimateMarkup) else self.result
        yield CompleteEvent(data=payload, message="Estimate generation complete")
