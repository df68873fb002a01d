"""
Rangekeeper - Deployment Planner

Turns a forest into an ordered sequence of stages. Nodes are walked
breadth-first by depth and, within a depth, grouped by sequence number; every
distinct (depth, sequence) pair becomes one stage. This gives:

- a parent's stage strictly precedes the stages of all its descendants
- siblings with equal sequence numbers share a stage
- siblings with smaller sequence numbers land in earlier stages

Revocation walks the same plan in reverse.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Tuple

from rangekeeper.core.exceptions import ResourceNotFoundError

from .composition import Forest


@dataclass(frozen=True)
class Stage:
    """A set of resources that can be processed concurrently."""
    index: int
    resource_ids: Tuple[int, ...]
    depth: int
    sequence: int

    def __iter__(self) -> Iterator[int]:
        return iter(self.resource_ids)

    def __len__(self) -> int:
        return len(self.resource_ids)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self.resource_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "resource_ids": list(self.resource_ids),
            "depth": self.depth,
            "sequence": self.sequence,
        }


@dataclass(frozen=True)
class Plan:
    """Ordered stages derived from a forest."""
    stages: Tuple[Stage, ...]
    reversed_order: bool = False
    _index: Dict[int, int] = field(default_factory=dict, init=False, compare=False, repr=False)

    def __post_init__(self) -> None:
        for stage in self.stages:
            for resource_id in stage.resource_ids:
                self._index[resource_id] = stage.index

    def __iter__(self) -> Iterator[Stage]:
        return iter(self.stages)

    def __len__(self) -> int:
        return len(self.stages)

    @property
    def resource_ids(self) -> List[int]:
        return [rid for stage in self.stages for rid in stage.resource_ids]

    def stage_of(self, resource_id: int) -> int:
        """Stage index of a resource."""
        try:
            return self._index[resource_id]
        except KeyError:
            raise ResourceNotFoundError("resource is not part of this plan", resource_id) from None

    def reversed(self) -> "Plan":
        """Same stages walked last-to-first, keeping each stage's index."""
        return Plan(stages=tuple(reversed(self.stages)), reversed_order=not self.reversed_order)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reversed": self.reversed_order,
            "stages": [stage.to_dict() for stage in self.stages],
        }


def build_plan(forest: Forest) -> Plan:
    """
    Build the deployment plan for a forest.

    Args:
        forest: Validated containment forest

    Returns:
        Plan with stages in deployment order
    """
    groups: Dict[Tuple[int, int], List[int]] = {}
    for resource_id in forest:
        key = (forest.depths[resource_id], forest.resources[resource_id].sequence)
        groups.setdefault(key, []).append(resource_id)

    stages = []
    for index, key in enumerate(sorted(groups)):
        depth, sequence = key
        stages.append(Stage(
            index=index,
            resource_ids=tuple(sorted(groups[key])),
            depth=depth,
            sequence=sequence,
        ))
    return Plan(stages=tuple(stages))
