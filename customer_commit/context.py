"""Tracing of nested provisioning phases.

Each traced block logs its entry and exit with the elapsed time. When a run
collects timings with `collect_timings`, the elapsed time of every traced
block is also recorded so that the run can report where its time went, e.g.
how long the appliance took to start listening.
"""

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
from time import perf_counter
from typing import Generator


_LOGGER = logging.getLogger(__name__)

# No public API
__all__: list[str] = []


@dataclass
class PhaseTimings:
    """Elapsed seconds of each traced block, in completion order."""

    durations: dict[str, float] = field(default_factory=dict)

    def add(self, label: str, elapsed: float) -> None:
        self.durations[label] = self.durations.get(label, 0.0) + elapsed

    @property
    def total(self) -> float:
        return sum(
            elapsed for label, elapsed in self.durations.items() if " > " not in label
        )

    def summary(self) -> str:
        """Render the top level blocks as a single line."""
        return ", ".join(
            f"{label} {elapsed:0.1f}s"
            for label, elapsed in self.durations.items()
            if " > " not in label
        )


_stack: contextvars.ContextVar[tuple[str, ...]] = contextvars.ContextVar(
    "trace", default=()
)
_timings: contextvars.ContextVar[PhaseTimings | None] = contextvars.ContextVar(
    "timings", default=None
)


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    """Log entry and exit of a named block, including elapsed time."""
    stack = _stack.get() + (name,)
    token = _stack.set(stack)
    label = " > ".join(stack)
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    finally:
        elapsed = perf_counter() - t1
        _stack.reset(token)
        if (timings := _timings.get()) is not None:
            timings.add(label, elapsed)
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, elapsed)


@contextmanager
def collect_timings() -> Generator[PhaseTimings, None, None]:
    """Record the elapsed time of the blocks traced within the context."""
    timings = PhaseTimings()
    token = _timings.set(timings)
    try:
        yield timings
    finally:
        _timings.reset(token)


def current_trace() -> tuple[str, ...]:
    """Return the names of the blocks currently being traced."""
    return _stack.get()
