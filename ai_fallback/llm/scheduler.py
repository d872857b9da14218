"""Adaptive failover scheduler.

Backends are tried in ascending score order. A success multiplies the
backend's score by ``success_factor``, a failure by ``failure_factor``.
After every call, whatever its outcome, all scores are multiplied by
``decay_factor`` and the order is re-sorted for the next call.

Concurrent ``run`` calls on one scheduler are not serialized. They may
interleave score updates and the final sort, which can leave the order
slightly stale but never loses or duplicates a backend.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from ai_fallback.schemas import BackendScore, ScoringPolicy

logger = logging.getLogger(__name__)

B = TypeVar("B")
R = TypeVar("R")

Operation = Callable[[B], Awaitable[R]]
FailurePredicate = Callable[[Any], bool]


class FailedResultError(Exception):
    """A backend returned a result that signals failure in-band."""

    def __init__(self, result: Any, backend_label: str = "") -> None:
        self.result = result
        self.backend_label = backend_label
        super().__init__(f"backend {backend_label or '<unknown>'} returned a failure result")


@dataclass
class BackendState(Generic[B]):
    backend: B
    score: float


def backend_label(backend: Any) -> str:
    model_id = getattr(backend, "model_id", None)
    if isinstance(model_id, str) and model_id:
        return model_id
    return repr(backend)


class FailoverScheduler(Generic[B]):
    def __init__(
        self,
        backends: Sequence[B],
        policy: ScoringPolicy | None = None,
        name: str = "",
    ) -> None:
        if not backends:
            raise ValueError("FailoverScheduler requires at least one backend")
        self.policy = policy or ScoringPolicy()
        self.name = name
        self._states: list[BackendState[B]] = [
            BackendState(backend=b, score=self.policy.initial_score) for b in backends
        ]

    def __len__(self) -> int:
        return len(self._states)

    @property
    def backends(self) -> list[B]:
        """Backends in the order the next call will try them."""
        return [s.backend for s in self._states]

    def snapshot(self) -> list[BackendScore]:
        return [
            BackendScore(position=i, label=backend_label(s.backend), score=s.score)
            for i, s in enumerate(self._states)
        ]

    async def run(
        self,
        operation: Operation[B, R],
        is_failure_result: FailurePredicate | None = None,
    ) -> R:
        """Try backends in score order until one succeeds.

        Args:
            operation: Async callable invoked with each backend in turn.
            is_failure_result: Optional predicate; a result for which it
                returns True is treated as a failure of that backend.

        Returns:
            The first successful result.

        Raises:
            The exception raised by the last backend tried, or
            FailedResultError if that backend's result was rejected by
            is_failure_result.
        """
        policy = self.policy
        last_err: Exception | None = None
        # Iterate a copy so a concurrent call re-sorting in place cannot make
        # this call skip or repeat a backend.
        attempt_order = list(self._states)
        try:
            for attempt, state in enumerate(attempt_order, start=1):
                label = backend_label(state.backend)
                logger.debug(
                    "Failover[%s]: attempt %d/%d on %s (score=%.3f)",
                    self.name,
                    attempt,
                    len(attempt_order),
                    label,
                    state.score,
                )
                try:
                    result = await operation(state.backend)
                    if is_failure_result is not None and is_failure_result(result):
                        raise FailedResultError(result, label)
                except Exception as e:
                    state.score *= policy.failure_factor
                    last_err = e
                    logger.warning(
                        "Failover[%s]: %s failed (%s: %s), score=%.3f",
                        self.name,
                        label,
                        type(e).__name__,
                        e,
                        state.score,
                    )
                    continue
                state.score *= policy.success_factor
                return result

            logger.error(
                "Failover[%s]: all %d backends failed, raising last error",
                self.name,
                len(attempt_order),
            )
            assert last_err is not None
            raise last_err
        finally:
            for state in self._states:
                state.score *= policy.decay_factor
            self._states.sort(key=lambda s: s.score)
