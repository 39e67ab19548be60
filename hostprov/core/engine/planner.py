"""
Run planner — dependency-ordered plan from the declared steps.

Kahn's algorithm over the step DAG. When several steps are ready at
once the one declared first wins, so the same playbook always yields
the same plan and the same log order.
Pure: no I/O, steps are never modified.
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field

from hostprov.core.errors import CycleError, PlanError
from hostprov.core.models.step import Step

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunPlan:
    """Steps in execution order."""

    steps: tuple[Step, ...] = ()
    _index: dict[str, int] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        self._index.update({s.id: i for i, s in enumerate(self.steps)})

    @property
    def ids(self) -> list[str]:
        return [s.id for s in self.steps]

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self):
        return iter(self.steps)

    def position(self, step_id: str) -> int:
        return self._index[step_id]

    def dependents_of(self, step_id: str) -> set[str]:
        """Every step that depends on ``step_id``, directly or transitively."""
        found: set[str] = set()
        frontier = {step_id}
        # plan order guarantees dependents come after their dependencies
        for step in self.steps[self.position(step_id) + 1:]:
            if frontier.intersection(step.depends_on):
                found.add(step.id)
                frontier.add(step.id)
        return found

    def to_dict(self) -> dict:
        return {
            "total": len(self.steps),
            "steps": [
                {
                    "id": s.id,
                    "description": s.description,
                    "depends_on": list(s.depends_on),
                    "action": s.action.describe(),
                    "failure_policy": str(s.failure_policy),
                    "timeout": s.timeout,
                }
                for s in self.steps
            ],
        }


def _validate(steps: list[Step]) -> None:
    """Duplicate ids and unknown references."""
    errors: list[str] = []
    seen: set[str] = set()
    for s in steps:
        if s.id in seen:
            errors.append(f"Duplicate step ID: {s.id}")
        seen.add(s.id)

    for s in steps:
        for dep in s.depends_on:
            if dep not in seen:
                errors.append(f"Step '{s.id}' depends on unknown step '{dep}'")
            elif dep == s.id:
                raise CycleError([s.id, s.id])

    if errors:
        raise PlanError("; ".join(errors))


def _find_cycle(steps: list[Step], remaining: set[str]) -> list[str]:
    """Walk dependency edges among unplanned steps until one repeats.

    Every unplanned step still has an unplanned dependency, so the walk
    never dead-ends.
    """
    by_id = {s.id: s for s in steps}
    start = next(s.id for s in steps if s.id in remaining)
    path: list[str] = []
    visited: dict[str, int] = {}
    node = start
    while node not in visited:
        visited[node] = len(path)
        path.append(node)
        node = next(d for d in by_id[node].depends_on if d in remaining)
    return path[visited[node]:] + [node]


def plan(steps: list[Step]) -> RunPlan:
    """Order steps so each comes after all of its dependencies.

    Args:
        steps: Steps in declaration order.

    Returns:
        RunPlan. Ties between ready steps go to declaration order.

    Raises:
        PlanError: Duplicate ids or unknown dependencies.
        CycleError: The graph has a cycle; ``members`` names it.
    """
    steps = list(steps)
    _validate(steps)

    order = {s.id: i for i, s in enumerate(steps)}
    in_degree = {s.id: len(set(s.depends_on)) for s in steps}
    successors: dict[str, list[str]] = {s.id: [] for s in steps}
    for s in steps:
        for dep in set(s.depends_on):
            successors[dep].append(s.id)

    ready = [order[sid] for sid, deg in in_degree.items() if deg == 0]
    heapq.heapify(ready)

    ordered: list[Step] = []
    while ready:
        step = steps[heapq.heappop(ready)]
        ordered.append(step)
        for succ in successors[step.id]:
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                heapq.heappush(ready, order[succ])

    if len(ordered) < len(steps):
        remaining = {s.id for s in steps} - {s.id for s in ordered}
        members = _find_cycle(steps, remaining)
        logger.debug("Cycle among %d unplanned steps: %s", len(remaining), members)
        raise CycleError(members)

    logger.info("Planned %d steps: %s", len(ordered), ", ".join(s.id for s in ordered))
    return RunPlan(steps=tuple(ordered))
