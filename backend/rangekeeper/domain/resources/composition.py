"""
Rangekeeper - Composition Model

Builds a forest of containment trees from a flat set of resources. Resources
are kept in an arena keyed by id; containment is expressed only through ids.

Within a sibling group (children of one parent, or the set of roots) resources
are partitioned into ordering classes by sequence number. Members of one class
may be deployed concurrently; classes are strictly ordered.
"""

from dataclasses import dataclass
from itertools import groupby
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple

from rangekeeper.core.exceptions import (
    CycleDetectedError,
    DuplicateIDError,
    InvalidSpecError,
    LevelViolationError,
    ResourceNotFoundError,
)

from .entities import Resource, ResourceForm


@dataclass(frozen=True, eq=False)
class Forest:
    """Containment forest over an arena of resources."""
    resources: Mapping[int, Resource]
    roots: Tuple[int, ...]
    parents: Mapping[int, Optional[int]]
    children: Mapping[int, Tuple[int, ...]]
    depths: Mapping[int, int]

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self.resources

    def __iter__(self) -> Iterator[int]:
        return iter(self.resources)

    def __len__(self) -> int:
        return len(self.resources)

    def get(self, resource_id: int) -> Resource:
        try:
            return self.resources[resource_id]
        except KeyError:
            raise ResourceNotFoundError("resource is not part of this forest", resource_id) from None

    def parent_of(self, resource_id: int) -> Optional[int]:
        self.get(resource_id)
        return self.parents[resource_id]

    def children_of(self, resource_id: int) -> Tuple[int, ...]:
        self.get(resource_id)
        return self.children[resource_id]

    def depth_of(self, resource_id: int) -> int:
        self.get(resource_id)
        return self.depths[resource_id]

    def ancestors(self, resource_id: int) -> List[int]:
        """Ancestors from the direct parent up to the root."""
        chain = []
        parent = self.parent_of(resource_id)
        while parent is not None:
            chain.append(parent)
            parent = self.parents[parent]
        return chain

    def descendants(self, resource_id: int) -> List[int]:
        """All transitive children, breadth-first."""
        result: List[int] = []
        queue = list(self.children_of(resource_id))
        while queue:
            current = queue.pop(0)
            result.append(current)
            queue.extend(self.children[current])
        return result

    def sibling_group(self, parent_id: Optional[int] = None) -> Tuple[int, ...]:
        """Members of a sibling group; ``None`` selects the roots."""
        if parent_id is None:
            return self.roots
        return self.children_of(parent_id)

    def ordering_classes(self, parent_id: Optional[int] = None) -> List[Tuple[int, ...]]:
        """
        Partition a sibling group by sequence number, ascending.

        Members of one class are concurrent; earlier classes deploy first.
        """
        members = sorted(
            self.sibling_group(parent_id),
            key=lambda rid: (self.resources[rid].sequence, rid),
        )
        return [
            tuple(group)
            for _, group in groupby(members, key=lambda rid: self.resources[rid].sequence)
        ]

    def subforest(self, root_ids: Iterable[int]) -> "Forest":
        """Forest restricted to the subtrees rooted at ``root_ids``."""
        selected: Set[int] = set()
        for root_id in root_ids:
            self.get(root_id)
            selected.add(root_id)
            selected.update(self.descendants(root_id))
        # Subtree tops lose their outside parent and become roots
        return build_forest(self.resources[rid] for rid in sorted(selected))


def build_forest(resources: Iterable[Resource], ignore_missing: bool = False) -> Forest:
    """
    Build the containment forest for a flat resource set.

    Deterministic for identical input. Sequence ties are valid.

    Args:
        resources: Resources forming the arena
        ignore_missing: Drop child references to resources outside the input
            (soft-deleted children) instead of failing

    Raises:
        DuplicateIDError: Same id appears twice
        InvalidSpecError: Dangling child reference, child with two parents or a
            single-form resource carrying children
        CycleDetectedError: Containment edges form a cycle
        LevelViolationError: A containment edge does not descend in level
    """
    arena: Dict[int, Resource] = {}
    for resource in resources:
        if resource.id in arena:
            raise DuplicateIDError("resource id appears more than once", resource.id)
        arena[resource.id] = resource
    arena = dict(sorted(arena.items()))

    parents: Dict[int, Optional[int]] = {rid: None for rid in arena}
    children: Dict[int, Tuple[int, ...]] = {}
    claimed: Set[int] = set()
    for resource in arena.values():
        if resource.contains and resource.resource_form != ResourceForm.COMPOSITE:
            raise InvalidSpecError("single-form resource cannot contain children", resource.id)
        kept: List[int] = []
        for child_id in resource.contains:
            if child_id == resource.id:
                raise CycleDetectedError("resource contains itself", resource.id)
            if child_id not in arena:
                if ignore_missing:
                    continue
                raise InvalidSpecError(
                    f"contained resource {child_id} is not part of the resource set",
                    resource.id,
                )
            if child_id in claimed:
                raise InvalidSpecError(
                    f"resource is contained by both {parents[child_id]} and {resource.id}",
                    child_id,
                )
            claimed.add(child_id)
            parents[child_id] = resource.id
            kept.append(child_id)
        children[resource.id] = tuple(kept)

    _check_acyclic(parents)

    for child_id, parent_id in parents.items():
        if parent_id is None:
            continue
        parent, child = arena[parent_id], arena[child_id]
        if not parent.level < child.level:
            raise LevelViolationError(
                f"parent {parent_id} has level {parent.level}, "
                f"child has level {child.level}",
                child_id,
            )

    roots = tuple(sorted(
        (rid for rid, parent in parents.items() if parent is None),
        key=lambda rid: (arena[rid].sequence, rid),
    ))

    depths: Dict[int, int] = {}
    frontier = list(roots)
    depth = 0
    while frontier:
        next_frontier = []
        for rid in frontier:
            depths[rid] = depth
            next_frontier.extend(children[rid])
        frontier = next_frontier
        depth += 1

    return Forest(
        resources=arena,
        roots=roots,
        parents=parents,
        children=children,
        depths=depths,
    )


def _check_acyclic(parents: Mapping[int, Optional[int]]) -> None:
    """Walk parent chains; each node has at most one parent."""
    settled: Set[int] = set()
    for start in parents:
        path: List[int] = []
        on_path: Set[int] = set()
        current: Optional[int] = start
        while current is not None and current not in settled:
            if current in on_path:
                raise CycleDetectedError(
                    "containment cycle: " + " -> ".join(str(rid) for rid in path[path.index(current):] + [current]),
                    current,
                )
            path.append(current)
            on_path.add(current)
            current = parents[current]
        settled.update(path)
