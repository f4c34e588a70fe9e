"""
Relationship Graph
==================

Directed, session-scoped edges between debate records.

RULES (checked in this order, first failure wins):
1. Both endpoints belong to the same session
2. No edge from a record to itself
3. No edge between two records of the same agent
4. Subtype is valid for the relation kind (strength is derived from it;
   supports ignore it)
5. At most one edge per ordered pair of records
6. The edge must not close a cycle

A rejected edge leaves the graph exactly as it was.

STRENGTH:
- concedes_to: full 1.0, partial 0.6, conditional 0.4
- rebuts: 0.5, +0.2 logical vs deductive target,
  +0.2 empirical vs empirical target, capped at 1.0
- supports: 0.5 whatever the subtype (the edge carries none)
"""

from __future__ import annotations
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union
import networkx as nx

from ..contracts.base import ErrorCode, Result
from ..contracts.records import (
    ArgumentType,
    AuditEventType,
    Chain,
    ChainDirection,
    ConcessionType,
    RebuttalType,
    RecordRef,
    RelationKind,
    RelationshipEdge,
    StoredObject,
)
from ..observability import ObservabilityEngine


CONCESSION_STRENGTH = {
    ConcessionType.FULL: 1.0,
    ConcessionType.PARTIAL: 0.6,
    ConcessionType.CONDITIONAL: 0.4,
}

REBUTTAL_BASE_STRENGTH = 0.5
REBUTTAL_MATCH_BONUS = 0.2
SUPPORT_STRENGTH = 0.5

# (rebuttal subtype, target argument type) pairs that earn the bonus
REBUTTAL_BONUSES = (
    (RebuttalType.LOGICAL, ArgumentType.DEDUCTIVE),
    (RebuttalType.EMPIRICAL, ArgumentType.EMPIRICAL),
)


def _invalid(message: str, **context) -> Result:
    return Result.fail(ErrorCode.INVALID_RELATIONSHIP, message, **context)


def coerce_kind(kind: Union[RelationKind, str]) -> Result:
    if isinstance(kind, RelationKind):
        return Result.success(kind)
    try:
        return Result.success(RelationKind(kind))
    except ValueError:
        return _invalid(f"Unknown relationship kind '{kind}'")


def compute_strength(
    kind: RelationKind,
    subtype: Optional[str],
    target_type: Optional[ArgumentType] = None
) -> Result:
    """Deterministic edge strength in [0, 1]."""
    if kind == RelationKind.CONCEDES_TO:
        try:
            concession = ConcessionType(subtype)
        except ValueError:
            return _invalid(f"Unknown concession type '{subtype}'")
        return Result.success(CONCESSION_STRENGTH[concession])

    if kind == RelationKind.REBUTS:
        try:
            rebuttal = RebuttalType(subtype)
        except ValueError:
            return _invalid(f"Unknown rebuttal type '{subtype}'")

        strength = REBUTTAL_BASE_STRENGTH
        for rebuttal_type, argument_type in REBUTTAL_BONUSES:
            if rebuttal == rebuttal_type and target_type == argument_type:
                strength += REBUTTAL_MATCH_BONUS
        return Result.success(round(min(1.0, strength), 6))

    # Support strength is fixed; any subtype is ignored
    return Result.success(SUPPORT_STRENGTH)


# =============================================================================
# EDGE-SET QUERIES (pure, over any edge collection)
# =============================================================================

def find_direct_relationships(
    record_id: str,
    edges: Iterable[RelationshipEdge]
) -> List[RelationshipEdge]:
    """Edges with ``record_id`` at either end."""
    return [e for e in edges if e.from_id == record_id or e.to_id == record_id]


def find_rebuttal_targets(record_id: str, edges: Iterable[RelationshipEdge]) -> List[str]:
    """Ids of records that rebut ``record_id``."""
    return [
        e.from_id for e in edges
        if e.to_id == record_id and e.kind == RelationKind.REBUTS
    ]


def find_concession_targets(record_id: str, edges: Iterable[RelationshipEdge]) -> List[str]:
    """Ids of records that concede to ``record_id``."""
    return [
        e.from_id for e in edges
        if e.to_id == record_id and e.kind == RelationKind.CONCEDES_TO
    ]


def detect_circular_references(edges: Iterable[RelationshipEdge]) -> Result:
    """Fail with CIRCULAR_REFERENCE if the edge set contains any cycle."""
    graph = nx.DiGraph()
    graph.add_edges_from((e.from_id, e.to_id) for e in edges)
    return _check_acyclic(graph)


def _check_acyclic(graph: nx.DiGraph) -> Result:
    try:
        cycle = nx.find_cycle(graph)
    except nx.NetworkXNoCycle:
        return Result.success()

    path = [u for u, _ in cycle] + [cycle[-1][1]]
    return Result.fail(
        ErrorCode.CIRCULAR_REFERENCE,
        "Circular reference detected in argument relationships",
        cycle=" -> ".join(path)
    )


def build_chain(
    root_id: str,
    all_records: Sequence[StoredObject],
    edges: Sequence[RelationshipEdge],
    direction: ChainDirection = ChainDirection.FORWARD
) -> Result:
    """
    Records reachable from ``root_id``.

    FORWARD follows from_id -> to_id, BACKWARD follows to_id -> from_id.
    Records come out in depth-first preorder, relationships in the order
    they were traversed. Depth is the longest edge path from the root.
    """
    records_by_id: Dict[str, StoredObject] = {r.id: r for r in all_records}
    if root_id not in records_by_id:
        return Result.fail(
            ErrorCode.OBJECT_NOT_FOUND,
            f"Chain root not found: {root_id}",
            id=root_id
        )

    forward = direction == ChainDirection.FORWARD
    adjacency: Dict[str, List[Tuple[str, RelationshipEdge]]] = {}
    for edge in edges:
        source, target = (edge.from_id, edge.to_id) if forward else (edge.to_id, edge.from_id)
        adjacency.setdefault(source, []).append((target, edge))

    visited: Set[str] = set()
    records: List[StoredObject] = []
    relationships: List[RelationshipEdge] = []
    traversed = nx.DiGraph()
    traversed.add_node(root_id)

    # Iterative DFS; children pushed in reverse to keep edge order
    stack: List[Tuple[str, Optional[RelationshipEdge]]] = [(root_id, None)]
    while stack:
        node, via = stack.pop()
        if via is not None:
            relationships.append(via)
        if node in visited:
            continue
        visited.add(node)
        if node in records_by_id:
            records.append(records_by_id[node])

        for target, edge in reversed(adjacency.get(node, [])):
            traversed.add_edge(node, target)
            stack.append((target, edge))

    # Cycles elsewhere in the session do not affect this chain
    cycle_check = _check_acyclic(traversed)
    if cycle_check.is_failure:
        return cycle_check

    return Result.success(Chain(
        root_id=root_id,
        records=tuple(records),
        relationships=tuple(relationships),
        depth=nx.dag_longest_path_length(traversed),
        direction=direction
    ))


# =============================================================================
# RELATIONSHIP GRAPH
# =============================================================================

class RelationshipGraph:
    """
    In-memory, derived edge store with one DiGraph per session.

    Edges are never persisted here; callers rebuild the graph from stored
    records when needed.
    """

    LAYER = "graph"

    def __init__(self, observability: Optional[ObservabilityEngine] = None):
        self._graphs: Dict[str, nx.DiGraph] = {}
        self._edges: Dict[str, List[RelationshipEdge]] = {}
        self._observability = observability or ObservabilityEngine()

    def add_edge(
        self,
        source: RecordRef,
        target: RecordRef,
        kind: Union[RelationKind, str],
        subtype: Optional[str] = None
    ) -> Result:
        """Validate and insert ``source -> target``. Returns the edge."""
        if source.session_id != target.session_id:
            return self._reject(source, target, Result.fail(
                ErrorCode.CROSS_SESSION_EDGE,
                "Relationships must stay within one session",
                from_session=source.session_id,
                to_session=target.session_id
            ))

        if source.record_id == target.record_id:
            return self._reject(source, target, Result.fail(
                ErrorCode.SELF_REFERENCE,
                f"Record {source.record_id} cannot relate to itself"
            ))

        if source.agent_id == target.agent_id:
            return self._reject(source, target, Result.fail(
                ErrorCode.SELF_REFERENCE,
                f"Agent {source.agent_id} cannot respond to its own record",
                agent_id=source.agent_id
            ))

        kind_result = coerce_kind(kind)
        if kind_result.is_failure:
            return self._reject(source, target, kind_result)
        relation: RelationKind = kind_result.value

        strength = compute_strength(relation, subtype, target.argument_type)
        if strength.is_failure:
            return self._reject(source, target, strength)

        graph = self._graphs.get(source.session_id)
        if graph is not None and graph.has_edge(source.record_id, target.record_id):
            return self._reject(source, target, Result.fail(
                ErrorCode.DUPLICATE_EDGE,
                f"Relationship {source.record_id} -> {target.record_id} already exists"
            ))

        if (
            graph is not None
            and source.record_id in graph
            and target.record_id in graph
            and nx.has_path(graph, target.record_id, source.record_id)
        ):
            return self._reject(source, target, Result.fail(
                ErrorCode.CIRCULAR_REFERENCE,
                f"Relationship {source.record_id} -> {target.record_id} would create a cycle"
            ))

        edge = RelationshipEdge(
            from_id=source.record_id,
            to_id=target.record_id,
            kind=relation,
            strength=strength.value,
            session_id=source.session_id,
            subtype=None if relation == RelationKind.SUPPORTS else subtype
        )
        self._insert(edge)

        self._observability.collect_metric("edges_created_total", 1, {"kind": relation.value})
        self._observability.log_audit(
            layer=self.LAYER,
            action="edge_created",
            entity_id=edge.from_id,
            entity_type=relation.value,
            event_type=AuditEventType.RELATIONSHIP,
            metadata=(
                ("to_id", edge.to_id),
                ("strength", f"{edge.strength:.2f}"),
                ("session_id", edge.session_id),
            )
        )
        return Result.success(edge)

    def load_edges(self, edges: Iterable[RelationshipEdge]) -> Result:
        """
        Insert previously computed edges.

        The batch is checked as a whole against the current graph; on any
        duplicate or cycle nothing is inserted. Returns the number loaded.
        """
        batch = list(edges)

        pairs: Set[Tuple[str, str, str]] = set()
        for edge in batch:
            key = (edge.session_id, edge.from_id, edge.to_id)
            existing = self._graphs.get(edge.session_id)
            if key in pairs or (existing is not None and existing.has_edge(edge.from_id, edge.to_id)):
                return Result.fail(
                    ErrorCode.DUPLICATE_EDGE,
                    f"Relationship {edge.from_id} -> {edge.to_id} already exists"
                )
            if edge.from_id == edge.to_id:
                return Result.fail(
                    ErrorCode.SELF_REFERENCE,
                    f"Record {edge.from_id} cannot relate to itself"
                )
            pairs.add(key)

        sessions = {edge.session_id for edge in batch}
        for session_id in sorted(sessions):
            combined = self._edges.get(session_id, []) + [
                e for e in batch if e.session_id == session_id
            ]
            cycle_check = detect_circular_references(combined)
            if cycle_check.is_failure:
                return cycle_check

        for edge in batch:
            self._insert(edge)

        self._observability.log_audit(
            layer=self.LAYER,
            action="edges_loaded",
            event_type=AuditEventType.RELATIONSHIP,
            metadata=(("count", str(len(batch))),)
        )
        return Result.success(len(batch))

    def edges(self, session_id: Optional[str] = None) -> List[RelationshipEdge]:
        """Edges in insertion order, for one session or all of them."""
        if session_id is not None:
            return list(self._edges.get(session_id, []))
        return [edge for session in sorted(self._edges) for edge in self._edges[session]]

    def sessions(self) -> List[str]:
        return sorted(self._edges)

    def clear(self, session_id: Optional[str] = None):
        if session_id is None:
            self._graphs.clear()
            self._edges.clear()
        else:
            self._graphs.pop(session_id, None)
            self._edges.pop(session_id, None)

    # Edge-set queries default to the graph's own edges

    def find_direct_relationships(
        self,
        record_id: str,
        edges: Optional[Iterable[RelationshipEdge]] = None
    ) -> List[RelationshipEdge]:
        return find_direct_relationships(record_id, self.edges() if edges is None else edges)

    def find_rebuttal_targets(
        self,
        record_id: str,
        edges: Optional[Iterable[RelationshipEdge]] = None
    ) -> List[str]:
        return find_rebuttal_targets(record_id, self.edges() if edges is None else edges)

    def find_concession_targets(
        self,
        record_id: str,
        edges: Optional[Iterable[RelationshipEdge]] = None
    ) -> List[str]:
        return find_concession_targets(record_id, self.edges() if edges is None else edges)

    def detect_circular_references(
        self,
        edges: Optional[Iterable[RelationshipEdge]] = None
    ) -> Result:
        return detect_circular_references(self.edges() if edges is None else edges)

    def build_chain(
        self,
        root_id: str,
        all_records: Sequence[StoredObject],
        edges: Optional[Sequence[RelationshipEdge]] = None,
        direction: ChainDirection = ChainDirection.FORWARD
    ) -> Result:
        return build_chain(
            root_id,
            all_records,
            self.edges() if edges is None else edges,
            direction
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _insert(self, edge: RelationshipEdge):
        graph = self._graphs.setdefault(edge.session_id, nx.DiGraph())
        graph.add_edge(edge.from_id, edge.to_id, edge=edge)
        self._edges.setdefault(edge.session_id, []).append(edge)

    def _reject(self, source: RecordRef, target: RecordRef, result: Result) -> Result:
        self._observability.collect_metric(
            "edges_rejected_total", 1, {"code": result.error.code.label}
        )
        self._observability.log_error(
            layer=self.LAYER,
            action="add_edge",
            error=result.error,
            entity_id=source.record_id,
            entity_type="edge"
        )
        return result
