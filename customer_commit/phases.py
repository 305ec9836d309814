"""A graph of named phases with declared prerequisites.

Running a target runs each of its transitive prerequisites exactly once, in
dependency order, before the target itself. Phases that are ready at the same
time run in the order they were added to the graph. Phases run one at a time
and the first failure aborts the run, leaving any containers in whatever state
the failing phase left them.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import logging

from .context import trace_context
from .exceptions import InputException

__all__ = [
    "Phase",
    "PhaseGraph",
]

_LOGGER = logging.getLogger(__name__)

Action = Callable[[], Awaitable[None]]


async def _noop() -> None:
    return None


@dataclass
class Phase:
    """A named step of the provisioning flow."""

    name: str
    action: Action = _noop
    requires: list[str] = field(default_factory=list)


class PhaseGraph:
    """Runs phases in dependency order."""

    def __init__(self) -> None:
        """Initialize PhaseGraph."""
        self._phases: dict[str, Phase] = {}

    def add(
        self, name: str, action: Action = _noop, requires: list[str] | None = None
    ) -> Phase:
        """Add a phase to the graph."""
        if name in self._phases:
            raise InputException(f"Phase '{name}' is already defined")
        phase = Phase(name, action, list(requires or []))
        self._phases[name] = phase
        return phase

    @property
    def names(self) -> list[str]:
        return list(self._phases)

    def action(self, name: str) -> Action:
        """Return the action of a phase."""
        if name not in self._phases:
            raise InputException(f"Unknown phase '{name}'")
        return self._phases[name].action

    def _closure(self, target: str) -> set[str]:
        """Return the target and all of its transitive prerequisites."""
        needed: set[str] = set()
        queue = [target]
        while queue:
            name = queue.pop()
            if name in needed:
                continue
            if name not in self._phases:
                raise InputException(f"Unknown phase '{name}'")
            needed.add(name)
            queue.extend(self._phases[name].requires)
        return needed

    def plan(self, target: str) -> list[str]:
        """Return the phases run for the target, in execution order."""
        needed = self._closure(target)
        pending = [phase for name, phase in self._phases.items() if name in needed]
        visited: set[str] = set()
        order: list[str] = []
        while pending:
            ready = [p for p in pending if not (set(p.requires) - visited)]
            if not ready:
                raise InputException(
                    "Phases have circular prerequisites: "
                    + ", ".join(p.name for p in pending)
                )
            # Declaration order breaks ties between ready phases.
            phase = ready[0]
            order.append(phase.name)
            visited.add(phase.name)
            pending.remove(phase)
        return order

    async def run(self, target: str) -> list[str]:
        """Run the target and its prerequisites, returning the phases run."""
        order = self.plan(target)
        _LOGGER.debug("Running %s: %s", target, " > ".join(order))
        for name in order:
            with trace_context(f"Phase '{name}'"):
                await self._phases[name].action()
        return order
