"""Flat bean records -> cycle-free tree snapshot.

Records are kept in an id-indexed arena and the hierarchy is a set of
adjacency lists keyed by parent id (``ROOT`` for the top level). Ancestor and
cycle checks are bounded walks over ids.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Iterable, Iterator, Mapping, Sequence

from .model import IN_PROGRESS, BeanRecord

logger = logging.getLogger(__name__)

ROOT = "__root__"


class CollapsibleState(str, Enum):
    NONE = "none"
    COLLAPSED = "collapsed"


@dataclass(frozen=True)
class Adjacency:
    records: Mapping[str, BeanRecord]
    children: Mapping[str, tuple[str, ...]]
    parent_of: Mapping[str, str | None]

    @property
    def roots(self) -> tuple[str, ...]:
        return self.children.get(ROOT, ())

    def children_of(self, bean_id: str | None) -> tuple[str, ...]:
        return self.children.get(ROOT if bean_id is None else bean_id, ())


def _index(records: Iterable[BeanRecord]) -> dict[str, BeanRecord]:
    by_id: dict[str, BeanRecord] = {}
    for record in records:
        if record.id in by_id:
            logger.debug("duplicate bean id %s; keeping the later record", record.id)
            # Re-insert so iteration order follows the surviving record.
            del by_id[record.id]
        by_id[record.id] = record
    return by_id


def _reaches(
    start: str,
    target: str,
    parent_of: Mapping[str, str | None],
    bound: int,
) -> bool:
    """Walk up from ``start``; True if ``target`` is met within ``bound`` steps."""
    current: str | None = start
    steps = 0
    while current is not None and steps <= bound:
        if current == target:
            return True
        current = parent_of.get(current)
        steps += 1
    return False


def build_adjacency(records: Iterable[BeanRecord], *, flat: bool = False) -> Adjacency:
    """Attach each record under its parent when that keeps the tree acyclic.

    A missing parent, a self-reference, or a reference that would close a
    cycle leaves the record at the root. Records are processed in input
    order, so in a parent cycle the first member visited that would close
    the loop becomes a root and the rest hang below it.
    """
    by_id = _index(records)
    bound = len(by_id)
    parent_of: dict[str, str | None] = {}
    children: dict[str, list[str]] = {ROOT: []}

    for bean_id, record in by_id.items():
        parent = record.parent_id
        attach = (
            not flat
            and parent is not None
            and parent != bean_id
            and parent in by_id
            and not _reaches(parent, bean_id, parent_of, bound)
        )
        if attach:
            parent_of[bean_id] = parent
            children.setdefault(parent, []).append(bean_id)
        else:
            if not flat and parent is not None and parent in by_id:
                logger.debug("bean %s: parent %s would form a cycle", bean_id, parent)
            parent_of[bean_id] = None
            children[ROOT].append(bean_id)

    return Adjacency(
        records=MappingProxyType(by_id),
        children=MappingProxyType({k: tuple(v) for k, v in children.items()}),
        parent_of=MappingProxyType(parent_of),
    )


@dataclass(frozen=True)
class NodeFlags:
    has_children: bool
    has_in_progress_descendant: bool


def compute_flags(adjacency: Adjacency) -> dict[str, NodeFlags]:
    """Single post-order pass producing per-node flags."""
    flags: dict[str, NodeFlags] = {}
    # Iterative DFS; (id, expanded) pairs avoid recursion depth limits.
    stack: list[tuple[str, bool]] = [(bean_id, False) for bean_id in adjacency.roots]
    while stack:
        bean_id, expanded = stack.pop()
        kids = adjacency.children_of(bean_id)
        if not expanded:
            stack.append((bean_id, True))
            stack.extend((kid, False) for kid in kids)
            continue
        flag = False
        for kid in kids:
            if adjacency.records[kid].status == IN_PROGRESS or flags[kid].has_in_progress_descendant:
                flag = True
                break
        flags[bean_id] = NodeFlags(
            has_children=bool(kids),
            has_in_progress_descendant=flag,
        )
    return flags


@dataclass(frozen=True)
class TreeNode:
    record: BeanRecord
    has_children: bool = False
    has_in_progress_descendant: bool = False
    depth: int = 0

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def collapsible_state(self) -> CollapsibleState:
        if self.has_children:
            return CollapsibleState.COLLAPSED
        return CollapsibleState.NONE

    @property
    def highlighted(self) -> bool:
        return self.record.status == IN_PROGRESS or self.has_in_progress_descendant

    def context_value(self) -> str:
        parts = ["bean", self.record.status, self.record.type]
        if self.record.parent_id:
            parts.append("hasParent")
        if self.has_children:
            parts.append("hasChildren")
        if self.record.blocking_ids:
            parts.append("isBlocking")
        if self.record.blocked_by_ids:
            parts.append("isBlocked")
        if self.record.status in {"scrapped", "draft"}:
            parts.append("deletable")
        return "-".join(parts)


Order = Callable[[Sequence[BeanRecord]], list[BeanRecord]]


@dataclass(frozen=True)
class TreeSnapshot:
    """Immutable result of one build. Never patched; replaced on refresh."""

    nodes: Mapping[str, TreeNode] = field(default_factory=dict)
    children: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    parent_of: Mapping[str, str | None] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, bean_id: object) -> bool:
        return bean_id in self.nodes

    @property
    def roots(self) -> tuple[TreeNode, ...]:
        return self.get_children(None)

    @property
    def records(self) -> dict[str, BeanRecord]:
        return {bean_id: node.record for bean_id, node in self.nodes.items()}

    def get(self, bean_id: str) -> TreeNode | None:
        return self.nodes.get(bean_id)

    def get_children(self, bean_id: str | None = None) -> tuple[TreeNode, ...]:
        key = ROOT if bean_id is None else bean_id
        return tuple(self.nodes[kid] for kid in self.children.get(key, ()))

    def get_parent(self, bean_id: str) -> TreeNode | None:
        parent = self.parent_of.get(bean_id)
        if parent is None:
            return None
        return self.nodes.get(parent)

    def nested(self, bean_id: str | None = None) -> list[dict]:
        """JSON-ready forest below ``bean_id`` (the roots when None)."""
        out: list[dict] = []
        for node in self.get_children(bean_id):
            out.append(
                {
                    **node.record.to_dict(),
                    "has_children": node.has_children,
                    "has_in_progress_descendant": node.has_in_progress_descendant,
                    "collapsible_state": node.collapsible_state.value,
                    "context_value": node.context_value(),
                    "children": self.nested(node.id),
                }
            )
        return out

    def walk(self) -> Iterator[TreeNode]:
        """Pre-order traversal in display order."""
        stack = list(reversed(self.get_children(None)))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(self.get_children(node.id)))


def build_snapshot(
    records: Iterable[BeanRecord],
    *,
    order: Order | None = None,
    flat: bool = False,
) -> TreeSnapshot:
    """Build the adjacency, the descendant flags, and order each sibling group."""
    adjacency = build_adjacency(records, flat=flat)
    flags = compute_flags(adjacency)

    children: dict[str, tuple[str, ...]] = {}
    for key, kids in adjacency.children.items():
        if not kids:
            continue
        group = [adjacency.records[kid] for kid in kids]
        ordered = order(group) if order is not None else group
        children[key] = tuple(r.id for r in ordered)

    nodes: dict[str, TreeNode] = {}
    stack: list[tuple[str, int]] = [(bean_id, 0) for bean_id in children.get(ROOT, ())]
    while stack:
        bean_id, depth = stack.pop()
        node_flags = flags[bean_id]
        nodes[bean_id] = TreeNode(
            record=adjacency.records[bean_id],
            has_children=node_flags.has_children,
            has_in_progress_descendant=node_flags.has_in_progress_descendant,
            depth=depth,
        )
        stack.extend((kid, depth + 1) for kid in children.get(bean_id, ()))

    logger.debug("built snapshot: %d nodes, %d roots", len(nodes), len(children.get(ROOT, ())))
    return TreeSnapshot(
        nodes=MappingProxyType(nodes),
        children=MappingProxyType(children),
        parent_of=adjacency.parent_of,
    )


EMPTY_SNAPSHOT = TreeSnapshot()
