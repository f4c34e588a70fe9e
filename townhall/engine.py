"""
Engine Orchestration Module

Wires the object store, the HEAD reference, the relationship graph and
observability together through explicit constructor parameters.

DESIGN PRINCIPLES:
==================
1. Components communicate ONLY through contract types and Results
2. Edges are derived from stored records and can always be rebuilt
3. All operations are traceable through observability
4. Multi-file operations are not transactional; a record may exist
   while the pointer or graph lags behind it
5. Session records are never rewritten; a status change stores the
   next revision and moves HEAD to it
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
import asyncio
import os

from .contracts.base import ErrorCode, Result, Timestamp
from .contracts.records import (
    ArgumentType,
    AuditEventType,
    ChainDirection,
    DebateStatus,
    RecordRef,
    RelationKind,
    SessionState,
    StoredObject,
)
from .core import RelationshipGraph, build_chain
from .core.debate import (
    record_close_vote,
    require_open,
    resume,
    tally_votes,
    validate_content,
    validate_structure,
)
from .core.relationships import coerce_kind, compute_strength
from .observability import ObservabilityConfig, ObservabilityEngine
from .storage import (
    CachedRecordReader,
    HashResolver,
    ObjectStore,
    ReferenceStore,
    StoreConfig,
    content_hash,
    validate_id,
)


_FALSE_VALUES = frozenset({'0', 'false', 'no', 'off'})


@dataclass
class TownhallConfig:
    """Unified configuration for the record store."""
    store: StoreConfig = None
    observability: ObservabilityConfig = None
    session_bucket: str = 'simulations'
    argument_bucket: str = 'arguments'
    reference_name: str = 'HEAD'

    def __post_init__(self):
        self.store = self.store or StoreConfig()
        self.observability = self.observability or ObservabilityConfig()

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> TownhallConfig:
        """
        Build a config from TOWNHALL_* environment variables.

        Raises ValueError on malformed numeric values.
        """
        env = os.environ if environ is None else environ
        store = StoreConfig()

        if env.get("TOWNHALL_STORE_DIR"):
            store.root = env["TOWNHALL_STORE_DIR"]
        if env.get("TOWNHALL_MAX_PAYLOAD_DEPTH"):
            store.max_payload_depth = _positive_int(env, "TOWNHALL_MAX_PAYLOAD_DEPTH")
        if env.get("TOWNHALL_MAX_PAYLOAD_BYTES"):
            store.max_payload_bytes = _positive_int(env, "TOWNHALL_MAX_PAYLOAD_BYTES")
        if env.get("TOWNHALL_WRITE_ONCE"):
            store.write_once = env["TOWNHALL_WRITE_ONCE"].strip().lower() not in _FALSE_VALUES

        return TownhallConfig(store=store)


def _positive_int(env: Mapping[str, str], name: str) -> int:
    try:
        value = int(env[name])
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {env[name]!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _submission_order(record: StoredObject):
    created_at = record.payload.get('created_at')
    return (created_at if isinstance(created_at, str) else '', record.id)


class TownhallEngine:
    """
    Debate record store.

    FLOW:
    =====
    1. open_session stores a session record and makes it active (HEAD)
    2. submit_argument stores an argument in the active session
    3. submit_response stores a record and links it to its target
    4. trace walks the relationship graph from any record
    5. vote_to_close collects votes; unanimous agreement closes the
       debate and clears HEAD
    """

    LAYER = "engine"

    def __init__(self, config: Optional[TownhallConfig] = None):
        self._config = config or TownhallConfig()

        self._observability = ObservabilityEngine(self._config.observability)
        self._objects = ObjectStore(self._config.store, self._observability)
        self._references = ReferenceStore(
            self._objects,
            bucket=self._config.session_bucket,
            name=self._config.reference_name,
            observability=self._observability
        )
        self._graph = RelationshipGraph(self._observability)
        self._resolver = HashResolver(self._objects)
        self._arguments = CachedRecordReader(self._objects, self._config.argument_bucket)
        self._sessions = CachedRecordReader(self._objects, self._config.session_bucket)
        # Serializes status checks against the writes they guard
        self._lifecycle = asyncio.Lock()

    @property
    def objects(self) -> ObjectStore:
        return self._objects

    @property
    def references(self) -> ReferenceStore:
        return self._references

    @property
    def graph(self) -> RelationshipGraph:
        return self._graph

    @property
    def observability(self) -> ObservabilityEngine:
        return self._observability

    async def initialize(self) -> Result:
        return await self._objects.initialize()

    # =========================================================================
    # SESSIONS
    # =========================================================================

    async def open_session(self, topic: str, participants: Sequence[str] = ()) -> Result:
        """
        Store a session record and make it active.

        Returns the debate id. Fails with REFERENCE_CONFLICT while another
        session is active; the session record is kept in that case.
        """
        if not isinstance(topic, str) or not topic.strip():
            return Result.fail(ErrorCode.INVALID_PAYLOAD, "Session topic cannot be empty")
        if any(not isinstance(p, str) or not p.strip() for p in participants):
            return Result.fail(ErrorCode.INVALID_PAYLOAD, "Participant ids must be non-empty strings")

        state = SessionState(
            record_id='',
            debate_id='',
            topic=topic,
            participants=tuple(sorted(set(participants))),
            created_at=Timestamp.now().to_iso()
        )
        stored = await self._objects.store(self._config.session_bucket, state.to_payload())
        if stored.is_failure:
            return stored

        session_id = stored.value
        activated = await self._references.set_active(session_id)
        if activated.is_failure:
            return activated

        self._observability.log_audit(
            layer=self.LAYER,
            action="session_opened",
            entity_id=session_id,
            entity_type=self._config.session_bucket,
            metadata=(("participants", str(len(state.participants))),)
        )
        return Result.success(session_id)

    async def checkout(self, session_id: str) -> Result:
        """
        Switch HEAD to a debate; abbreviated ids are expanded first.

        Any revision id of a debate checks out its latest revision.
        """
        resolved = await self._resolver.resolve(self._config.session_bucket, session_id)
        if resolved.is_failure:
            return resolved

        state = await self._latest_state(resolved.value)
        if state.is_failure:
            return state
        return await self._references.switch_active(state.value.record_id)

    async def active_session(self) -> Result:
        """The StoredObject HEAD points to."""
        active = await self._references.get_active()
        if active.is_failure:
            return active
        return await self._objects.retrieve(self._config.session_bucket, active.value)

    async def session_state(self, session_id: Optional[str] = None) -> Result:
        """Latest SessionState of a debate (default: the active one)."""
        return await self._session_for(session_id)

    async def resolve(self, bucket: str, short_id: str) -> Result:
        return await self._resolver.resolve(bucket, short_id)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def vote_to_close(
        self,
        agent_id: str,
        vote: bool = True,
        reason: Optional[str] = None
    ) -> Result:
        """
        Record a participant's vote on closing the active debate.

        The first vote moves the debate to voting. Once every participant
        has voted yes the debate is closed and HEAD is cleared. Returns
        the VoteTally after this vote.
        """
        if not isinstance(vote, bool):
            return Result.fail(ErrorCode.INVALID_PAYLOAD, "Vote must be true or false")
        if reason is not None and not isinstance(reason, str):
            return Result.fail(ErrorCode.INVALID_PAYLOAD, "Vote reason must be a string")

        async with self._lifecycle:
            session = await self._session_for(None)
            if session.is_failure:
                return session

            updated = record_close_vote(
                session.value, agent_id, vote, Timestamp.now().to_iso(), reason
            )
            if updated.is_failure:
                return updated

            saved = await self._save_state(updated.value)
            if saved.is_failure:
                return saved

        state: SessionState = saved.value
        tally = tally_votes(state)
        self._observability.collect_metric("close_votes_total", 1, {"vote": "yes" if vote else "no"})
        self._observability.log_audit(
            layer=self.LAYER,
            action="close_vote_recorded",
            entity_id=state.debate_id,
            entity_type=self._config.session_bucket,
            metadata=(
                ("agent_id", agent_id),
                ("vote", "yes" if vote else "no"),
                ("votes", f"{tally.total}/{tally.required}"),
            )
        )
        if state.status == DebateStatus.CLOSED:
            self._observability.log_audit(
                layer=self.LAYER,
                action="session_closed",
                entity_id=state.debate_id,
                entity_type=self._config.session_bucket,
                metadata=(("revision", str(state.revision)),)
            )
        return Result.success(tally)

    async def resume_session(self) -> Result:
        """Return the active debate from voting to active, discarding its votes."""
        async with self._lifecycle:
            session = await self._session_for(None)
            if session.is_failure:
                return session

            resumed = resume(session.value)
            if resumed.is_failure:
                return resumed

            saved = await self._save_state(resumed.value)
            if saved.is_failure:
                return saved

        self._observability.log_audit(
            layer=self.LAYER,
            action="session_resumed",
            entity_id=saved.value.debate_id,
            entity_type=self._config.session_bucket
        )
        return saved

    # =========================================================================
    # ARGUMENTS
    # =========================================================================

    async def submit_argument(
        self,
        agent_id: str,
        content: str,
        argument_type: Union[ArgumentType, str],
        session_id: Optional[str] = None,
        structure: Optional[Dict[str, Any]] = None
    ) -> Result:
        """
        Store an argument in ``session_id`` (default: the active session).

        A ``structure`` is checked against the argument type and stored
        with the argument. The debate must be active.
        """
        try:
            argument_type = ArgumentType(argument_type)
        except ValueError:
            return Result.fail(
                ErrorCode.INVALID_PAYLOAD,
                f"Unknown argument type '{argument_type}'"
            )

        if structure is not None:
            checked = validate_structure(argument_type, structure)
            if checked.is_failure:
                return checked

        async with self._lifecycle:
            session = await self._open_session_for(session_id)
            if session.is_failure:
                return session
            debate_id = session.value.debate_id

            payload = self._argument_payload(agent_id, content, debate_id)
            if payload.is_failure:
                return payload
            record = payload.value
            record['argument_type'] = argument_type.value
            if structure is not None:
                record['structure'] = structure

            stored = await self._objects.store(self._config.argument_bucket, record)
            if stored.is_failure:
                return stored

        self._observability.log_audit(
            layer=self.LAYER,
            action="argument_submitted",
            entity_id=stored.value,
            entity_type=self._config.argument_bucket,
            event_type=AuditEventType.WRITE,
            metadata=(("session_id", debate_id), ("agent_id", agent_id))
        )
        return stored

    async def submit_response(
        self,
        agent_id: str,
        content: str,
        target_id: str,
        kind: Union[RelationKind, str],
        subtype: Optional[str] = None,
        argument_type: Optional[Union[ArgumentType, str]] = None,
        structure: Optional[Dict[str, Any]] = None
    ) -> Result:
        """
        Store a rebuttal, concession or support and link it to its target.

        The response joins the target's session, which must be active. A
        ``structure`` needs an ``argument_type`` to be checked against.
        If the edge is rejected the newly stored record is deleted again.
        Returns the edge.
        """
        if argument_type is not None:
            try:
                argument_type = ArgumentType(argument_type)
            except ValueError:
                return Result.fail(
                    ErrorCode.INVALID_PAYLOAD,
                    f"Unknown argument type '{argument_type}'"
                )

        if structure is not None:
            if argument_type is None:
                return Result.fail(
                    ErrorCode.INVALID_STRUCTURE,
                    "A response structure needs an argument type"
                )
            checked = validate_structure(argument_type, structure)
            if checked.is_failure:
                return checked

        relation = coerce_kind(kind)
        if relation.is_failure:
            return relation
        if relation.value == RelationKind.SUPPORTS:
            subtype = None

        async with self._lifecycle:
            target = await self._load_ref(target_id)
            if target.is_failure:
                return target
            target_ref: RecordRef = target.value

            strength = compute_strength(relation.value, subtype, target_ref.argument_type)
            if strength.is_failure:
                return strength

            session = await self._open_session_for(target_ref.session_id)
            if session.is_failure:
                return session

            payload = self._argument_payload(agent_id, content, target_ref.session_id)
            if payload.is_failure:
                return payload
            record = payload.value
            record['target_id'] = target_ref.record_id
            record['relation'] = relation.value.value
            if subtype is not None:
                record['subtype'] = subtype
            if argument_type is not None:
                record['argument_type'] = argument_type.value
            if structure is not None:
                record['structure'] = structure

            bucket = self._config.argument_bucket
            existed = await self._objects.exists(bucket, content_hash(record))
            if existed.is_failure:
                return existed

            stored = await self._objects.store(bucket, record)
            if stored.is_failure:
                return stored

            source_ref = RecordRef(
                record_id=stored.value,
                agent_id=agent_id,
                session_id=target_ref.session_id,
                argument_type=argument_type
            )
            linked = self._graph.add_edge(source_ref, target_ref, relation.value, subtype)
            if linked.is_failure:
                # Only roll back a record this call created
                if not existed.value:
                    removed = await self._objects.delete(bucket, stored.value)
                    if removed.is_failure:
                        return removed
                return linked

        self._observability.log_audit(
            layer=self.LAYER,
            action="response_submitted",
            entity_id=stored.value,
            entity_type=self._config.argument_bucket,
            event_type=AuditEventType.RELATIONSHIP,
            metadata=(("target_id", target_ref.record_id), ("kind", linked.value.kind.value))
        )
        return linked

    async def history(self, session_id: Optional[str] = None) -> Result:
        """Records of a session (default: active), oldest first."""
        session = await self._session_for(session_id)
        if session.is_failure:
            return session

        records = await self._session_records(session.value.debate_id)
        if records.is_failure:
            return records
        return Result.success(sorted(records.value, key=_submission_order))

    # =========================================================================
    # GRAPH
    # =========================================================================

    async def trace(
        self,
        root_id: str,
        direction: ChainDirection = ChainDirection.FORWARD
    ) -> Result:
        """Chain of records reachable from ``root_id`` within its session."""
        resolved = await self._resolver.resolve(self._config.argument_bucket, root_id)
        if resolved.is_failure:
            return resolved

        root = await self._load_ref(resolved.value)
        if root.is_failure:
            return root

        records = await self._session_records(root.value.session_id)
        if records.is_failure:
            return records

        return build_chain(
            resolved.value,
            records.value,
            self._graph.edges(root.value.session_id),
            direction
        )

    async def rebuild_graph(self, session_id: str) -> Result:
        """
        Re-derive a session's edges from its stored response records.

        Responses are replayed in submission order into a scratch graph.
        The session's edges are replaced only when every response links,
        so a failed rebuild leaves the current edges in place. Returns the
        edge count.
        """
        records = await self._session_records(session_id)
        if records.is_failure:
            return records

        by_id: Dict[str, StoredObject] = {r.id: r for r in records.value}
        responses: List[StoredObject] = sorted(
            (r for r in records.value if 'target_id' in r.payload),
            key=_submission_order
        )

        scratch = RelationshipGraph(self._observability)
        for response in responses:
            if not isinstance(response.payload['target_id'], str):
                return Result.fail(
                    ErrorCode.INVALID_RELATIONSHIP,
                    "Response target must be a record id",
                    id=response.id
                )
            target = by_id.get(response.payload['target_id'])
            if target is None:
                return Result.fail(
                    ErrorCode.OBJECT_NOT_FOUND,
                    f"Response target not found: {response.payload['target_id']}",
                    id=response.id
                )

            source_ref = RecordRef.from_object(response)
            if source_ref.is_failure:
                return source_ref
            target_ref = RecordRef.from_object(target)
            if target_ref.is_failure:
                return target_ref

            linked = scratch.add_edge(
                source_ref.value,
                target_ref.value,
                response.payload.get('relation'),
                response.payload.get('subtype')
            )
            if linked.is_failure:
                return linked

        self._graph.clear(session_id)
        loaded = self._graph.load_edges(scratch.edges(session_id))
        if loaded.is_failure:
            return loaded

        self._observability.log_audit(
            layer=self.LAYER,
            action="graph_rebuilt",
            entity_id=session_id,
            entity_type=self._config.session_bucket,
            metadata=(("edges", str(loaded.value)),)
        )
        return Result.success(loaded.value)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _session_for(self, session_id: Optional[str]) -> Result:
        if session_id is None:
            active = await self._references.get_active()
            if active.is_failure:
                return active
            session_id = active.value
        return await self._latest_state(session_id)

    async def _open_session_for(self, session_id: Optional[str]) -> Result:
        session = await self._session_for(session_id)
        if session.is_failure:
            return session
        return require_open(session.value)

    async def _latest_state(self, record_id: str) -> Result:
        """Newest revision of the debate that ``record_id`` belongs to."""
        id_result = validate_id(record_id)
        if id_result.is_failure:
            return id_result

        loaded = await self._sessions.get(record_id)
        if loaded.is_failure:
            return loaded
        parsed = SessionState.from_object(loaded.value)
        if parsed.is_failure:
            return parsed

        records = await self._sessions.all()
        if records.is_failure:
            return records

        latest: SessionState = parsed.value
        for record in records.value:
            candidate = SessionState.from_object(record)
            if candidate.is_failure or candidate.value.debate_id != latest.debate_id:
                continue
            if (candidate.value.revision, candidate.value.record_id) > (latest.revision, latest.record_id):
                latest = candidate.value
        return Result.success(latest)

    async def _save_state(self, state: SessionState) -> Result:
        """Store the next revision and point HEAD at it, or clear HEAD once closed."""
        stored = await self._objects.store(self._config.session_bucket, state.to_payload())
        if stored.is_failure:
            return stored

        if state.status == DebateStatus.CLOSED:
            moved = await self._references.clear_active()
        else:
            moved = await self._references.switch_active(stored.value)
        if moved.is_failure:
            return moved
        return Result.success(replace(state, record_id=stored.value))

    @staticmethod
    def _argument_payload(agent_id: str, content: str, session_id: str) -> Result:
        if not isinstance(agent_id, str) or not agent_id.strip():
            return Result.fail(ErrorCode.INVALID_PAYLOAD, "Agent id cannot be empty")
        checked = validate_content(content)
        if checked.is_failure:
            return checked
        return Result.success({
            'agent_id': agent_id,
            'session_id': session_id,
            'content': content,
            'created_at': Timestamp.now().to_iso(),
        })

    async def _load_ref(self, record_id: str) -> Result:
        id_result = validate_id(record_id)
        if id_result.is_failure:
            return id_result

        loaded = await self._arguments.get(record_id)
        if loaded.is_failure:
            return loaded
        return RecordRef.from_object(loaded.value)

    async def _session_records(self, session_id: str) -> Result:
        loaded = await self._arguments.all()
        if loaded.is_failure:
            return loaded
        return Result.success([
            r for r in loaded.value
            if isinstance(r.payload, dict) and r.payload.get('session_id') == session_id
        ])
