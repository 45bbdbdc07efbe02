"""Ordered retry-and-fallback over a list of upstream sources.

Each source is tried up to ``attempts_per_source`` times with linear backoff
before moving to the next one. The run ends in SUCCESS on the first accepted
result or in EXHAUSTED after exactly ``attempts_per_source * len(sources)``
failed tries. Exhaustion is returned, never raised.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

from stockwatch import metrics
from stockwatch.ingest.http_client import (
    ExhaustedSourcesError,
    MalformedPayloadError,
    SourceError,
    UpstreamErrorPage,
)

logger = logging.getLogger(__name__)


class FallbackState(Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"


class FailureKind(Enum):
    TRANSIENT = "transient"
    STATUS = "status"
    MALFORMED = "malformed"
    ERROR_PAGE = "error_page"


@dataclass
class Source:
    """A named upstream fetch. ``fetch`` is called once per attempt."""
    name: str
    fetch: Callable[[], Awaitable[Any]]


@dataclass
class AttemptFailure:
    source: str
    attempt: int
    kind: FailureKind
    message: str
    status: Optional[int] = None


@dataclass
class FallbackOutcome:
    """Terminal result of a run."""
    state: FallbackState
    value: Any = None
    source: Optional[str] = None
    source_index: Optional[int] = None
    failures: list[AttemptFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is FallbackState.SUCCESS

    @property
    def attempts(self) -> int:
        return len(self.failures) + (1 if self.ok else 0)

    @property
    def last_status(self) -> Optional[int]:
        for failure in reversed(self.failures):
            if failure.status is not None:
                return failure.status
        return None

    @property
    def saw_error_page(self) -> bool:
        return any(f.kind is FailureKind.ERROR_PAGE for f in self.failures)

    def describe(self) -> str:
        """Short diagnostic for notes and logs."""
        if self.ok:
            return f"ok via {self.source}"
        if not self.failures:
            return "no sources"
        last = self.failures[-1]
        return f"{len(self.failures)} failed tries, last: {last.source} {last.kind.value} ({last.message})"

    def raise_for_exhausted(self):
        """Turn an exhausted outcome into ExhaustedSourcesError."""
        if self.state is FallbackState.EXHAUSTED:
            raise ExhaustedSourcesError(self.describe(), failures=self.failures)


def default_status_ok(status: int) -> bool:
    return 200 <= status < 300


class FallbackOrchestrator:
    """
    Drives sources through PENDING -> ATTEMPTING(i) -> SUCCESS | EXHAUSTED.

    A try fails on a SourceError raised by the fetch, on a result whose
    ``status`` attribute is not tolerated, or on a result the ``accept``
    validator rejects.
    """

    def __init__(
        self,
        attempts_per_source: int = 2,
        base_delay: float = 0.1,
        accept: Optional[Callable[[Any], bool]] = None,
        status_ok: Callable[[int], bool] = default_status_ok,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        label: str = "fallback",
    ):
        if attempts_per_source < 1:
            raise ValueError("attempts_per_source must be >= 1")
        self.attempts_per_source = attempts_per_source
        self.base_delay = base_delay
        self.accept = accept
        self.status_ok = status_ok
        self.label = label
        self._sleep = sleep
        self.state = FallbackState.PENDING

    def backoff(self, attempt: int) -> float:
        """Linear backoff: base_delay x attempt number (1-based)."""
        return self.base_delay * attempt

    def _check(self, source: Source, attempt: int, value: Any) -> Optional[AttemptFailure]:
        status = getattr(value, "status", None)
        if isinstance(status, int) and not self.status_ok(status):
            return AttemptFailure(source.name, attempt, FailureKind.STATUS, f"HTTP {status}", status)
        if self.accept is not None and not self.accept(value):
            return AttemptFailure(
                source.name, attempt, FailureKind.MALFORMED, "payload rejected",
                status if isinstance(status, int) else None,
            )
        return None

    async def run(self, sources: Sequence[Source]) -> FallbackOutcome:
        """Try every source in order until one result is accepted."""
        self.state = FallbackState.PENDING
        failures: list[AttemptFailure] = []

        for index, source in enumerate(sources):
            for attempt in range(1, self.attempts_per_source + 1):
                self.state = FallbackState.ATTEMPTING
                try:
                    value = await source.fetch()
                except UpstreamErrorPage as e:
                    failure = AttemptFailure(source.name, attempt, FailureKind.ERROR_PAGE, str(e), e.status)
                except MalformedPayloadError as e:
                    failure = AttemptFailure(source.name, attempt, FailureKind.MALFORMED, str(e), e.status)
                except SourceError as e:
                    failure = AttemptFailure(source.name, attempt, FailureKind.TRANSIENT, str(e), e.status)
                except asyncio.TimeoutError:
                    failure = AttemptFailure(source.name, attempt, FailureKind.TRANSIENT, "timeout")
                else:
                    failure = self._check(source, attempt, value)
                    if failure is None:
                        self.state = FallbackState.SUCCESS
                        metrics.source_attempts_total.labels(source=self.label, outcome="success").inc()
                        logger.debug(f"{self.label}: {source.name} succeeded on attempt {attempt}")
                        return FallbackOutcome(
                            state=self.state,
                            value=value,
                            source=source.name,
                            source_index=index,
                            failures=failures,
                        )

                failures.append(failure)
                metrics.source_attempts_total.labels(source=self.label, outcome=failure.kind.value).inc()
                logger.debug(
                    f"{self.label}: {source.name} attempt {attempt}/{self.attempts_per_source} "
                    f"failed ({failure.kind.value}: {failure.message})"
                )
                if attempt < self.attempts_per_source:
                    await self._sleep(self.backoff(attempt))

        self.state = FallbackState.EXHAUSTED
        if sources:
            logger.info(f"{self.label}: exhausted {len(sources)} source(s) after {len(failures)} tries")
        return FallbackOutcome(state=self.state, failures=failures)
