"""
Cycle-safe traversal of the entity graph.

From each node the walk follows hierarchy edges to its children (entities that
point TO it with ``part_of``/``depends_on``), then every other outgoing edge to
related entities. A shared visited set keyed by entity id guarantees that each
node is produced once, even when the graph contains cycles. The walk uses an
explicit stack, so depth is bounded only by memory.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Protocol

from sqlalchemy import select

from core.models import HIERARCHY_RELATION_TYPES, MemoryEntity, MemoryRelation


class TraversalObserver(Protocol):
    def node_visited(self, display_name: str) -> None:
        ...


@dataclass(frozen=True)
class TraversalStep:
    entity: MemoryEntity
    parent_id: Optional[int]
    relation_type: Optional[str]
    depth: int


def _neighbors(db, entity_id: int) -> list[tuple[int, str]]:
    children = (
        db.query(MemoryRelation.from_entity_id, MemoryRelation.relation_type)
        .filter(
            MemoryRelation.to_entity_id == entity_id,
            MemoryRelation.relation_type.in_(HIERARCHY_RELATION_TYPES),
        )
        .order_by(MemoryRelation.id.asc())
        .all()
    )
    related = (
        db.query(MemoryRelation.to_entity_id, MemoryRelation.relation_type)
        .filter(
            MemoryRelation.from_entity_id == entity_id,
            MemoryRelation.relation_type.notin_(HIERARCHY_RELATION_TYPES),
        )
        .order_by(MemoryRelation.id.asc())
        .all()
    )
    return [(row[0], row[1]) for row in children] + [(row[0], row[1]) for row in related]


def iter_subtree(db, seed_ids: Iterable[int]) -> Iterator[TraversalStep]:
    """Depth-first walk from each seed, yielding every reachable entity once."""
    visited: set[int] = set()
    for seed_id in seed_ids:
        stack: list[tuple[int, Optional[int], Optional[str], int]] = [(seed_id, None, None, 0)]
        while stack:
            entity_id, parent_id, relation_type, depth = stack.pop()
            if entity_id in visited:
                continue
            entity = db.get(MemoryEntity, entity_id)
            if entity is None:
                # Removed by a concurrent writer, or a dangling seed id.
                continue
            visited.add(entity_id)
            yield TraversalStep(entity, parent_id, relation_type, depth)

            # Reversed so the first-discovered neighbor is popped first.
            for neighbor_id, neighbor_type in reversed(_neighbors(db, entity_id)):
                if neighbor_id not in visited:
                    stack.append((neighbor_id, entity_id, neighbor_type, depth + 1))


def count_subtree_nodes(db, seed_ids: Iterable[int]) -> int:
    """Distinct entities reachable from the seeds; never less than 1."""
    count = sum(1 for _ in iter_subtree(db, seed_ids))
    return max(count, 1)


def serialize_node(entity: MemoryEntity, relation_type: Optional[str] = None) -> dict:
    node = {
        "name": entity.name,
        "entity_type": entity.entity_type,
        "aliases": entity.aliases,
        "description": entity.description,
        "observations": [
            {
                "content": observation.content,
                "created_at": observation.created_at.isoformat() if observation.created_at else None,
            }
            for observation in entity.observations
        ],
        "children": [],
    }
    if relation_type:
        node["relation_type"] = relation_type
    return node


def build_export_forest(
    db,
    seed_ids: Iterable[int],
    observer: Optional[TraversalObserver] = None,
) -> list[dict]:
    """
    Materialize the subtrees under ``seed_ids`` as nested dicts.

    The observer is told about each node before it is serialized.
    """
    nodes: dict[int, dict] = {}
    roots: list[dict] = []
    for step in iter_subtree(db, seed_ids):
        if observer is not None:
            observer.node_visited(step.entity.name)
        node = serialize_node(step.entity, step.relation_type)
        nodes[step.entity.id] = node
        if step.parent_id is None:
            roots.append(node)
        else:
            nodes[step.parent_id]["children"].append(node)
    return roots


def list_root_nodes(db) -> list[MemoryEntity]:
    """Entities that are nobody's child: Projects first, then the rest, by name."""
    child_ids = select(MemoryRelation.from_entity_id).where(
        MemoryRelation.relation_type.in_(HIERARCHY_RELATION_TYPES)
    )
    roots = db.query(MemoryEntity).filter(MemoryEntity.id.notin_(child_ids))
    projects = roots.filter(MemoryEntity.entity_type == "Project").order_by(MemoryEntity.name).all()
    others = roots.filter(MemoryEntity.entity_type != "Project").order_by(MemoryEntity.name).all()
    return projects + others


__all__ = [
    "TraversalObserver",
    "TraversalStep",
    "iter_subtree",
    "count_subtree_nodes",
    "build_export_forest",
    "serialize_node",
    "list_root_nodes",
]
