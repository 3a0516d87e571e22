"""Explicit channel around a worker's output stream.

The provider produces chunks through an async iterator. The execution stage
pulls them through a ``WorkerOutputChannel``, which records how the stream
ended so the controller can tell normal exhaustion from an early close
(cancellation) or a producer failure.
"""

import asyncio
from collections.abc import AsyncIterator
from enum import StrEnum
from types import TracebackType

import structlog

logger = structlog.get_logger()


class StreamOutcome(StrEnum):
    PENDING = "pending"
    EXHAUSTED = "exhausted"
    CLOSED_EARLY = "closed_early"
    FAILED = "failed"


class WorkerOutputChannel:
    """Consumer side of one worker's output.

    Usage:
        >>> async with WorkerOutputChannel(provider.stream_worker_output(...)) as channel:
        ...     async for chunk in channel:
        ...         log.append_content(event.id, chunk)
        >>> channel.outcome
        <StreamOutcome.EXHAUSTED: 'exhausted'>
    """

    def __init__(self, source: AsyncIterator[str], *, agent_id: str = "") -> None:
        self._source = source
        self.agent_id = agent_id
        self.outcome = StreamOutcome.PENDING
        self.error: BaseException | None = None
        self.chunks_received = 0
        self._closed = False

    def __aiter__(self) -> "WorkerOutputChannel":
        return self

    async def __anext__(self) -> str:
        if self.outcome != StreamOutcome.PENDING:
            raise StopAsyncIteration
        try:
            chunk = await anext(self._source)
        except StopAsyncIteration:
            self.outcome = StreamOutcome.EXHAUSTED
            raise
        except asyncio.CancelledError:
            await self.close()
            raise
        except Exception as e:
            self.outcome = StreamOutcome.FAILED
            self.error = e
            raise
        self.chunks_received += 1
        return chunk

    async def close(self) -> None:
        """Stop consuming. Idempotent; closes the producer if it supports it."""
        if self.outcome == StreamOutcome.PENDING:
            self.outcome = StreamOutcome.CLOSED_EARLY
            logger.info(
                "worker_stream_closed_early",
                agent_id=self.agent_id,
                chunks_received=self.chunks_received,
            )
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()

    async def __aenter__(self) -> "WorkerOutputChannel":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
