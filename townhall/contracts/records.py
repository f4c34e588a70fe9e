"""
Record Contracts

Immutable data types exchanged between the storage, reference and
relationship layers.

DESIGN:
=======
- StoredObject is owned by the object store once written
- RelationshipEdge is derived; never persisted on its own
- Chain is a read-only view recomputed per query
- "Updates" produce new values (dataclasses.replace), never mutation
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
from enum import Enum

from .base import ErrorCode, Result, Timestamp


# =============================================================================
# STORED OBJECTS
# =============================================================================

@dataclass(frozen=True)
class StoredObject:
    """
    Immutable persisted record.

    INVARIANT: id == sha256(canonical payload) unless the id was supplied
    explicitly by the caller at store time.
    """
    id: str
    bucket: str
    payload: Any
    stored_at: Timestamp

    def to_document(self) -> Dict[str, Any]:
        """On-disk JSON document."""
        return {
            'id': self.id,
            'bucket': self.bucket,
            'payload': self.payload,
            'storedAt': self.stored_at.to_iso(),
        }


@dataclass(frozen=True)
class Reference:
    """Named mutable pointer (e.g. HEAD). ``target_id`` is None when unset."""
    name: str
    target_id: Optional[str] = None

    @property
    def is_set(self) -> bool:
        return self.target_id is not None


# =============================================================================
# RELATIONSHIP TYPES
# =============================================================================

class RelationKind(Enum):
    """Directed relationship kinds between debate records."""
    REBUTS = "rebuts"
    CONCEDES_TO = "concedes_to"
    SUPPORTS = "supports"


class ArgumentType(Enum):
    """Structural form of an argument record."""
    DEDUCTIVE = "deductive"
    INDUCTIVE = "inductive"
    EMPIRICAL = "empirical"


class RebuttalType(Enum):
    LOGICAL = "logical"
    EMPIRICAL = "empirical"
    METHODOLOGICAL = "methodological"


class ConcessionType(Enum):
    FULL = "full"
    PARTIAL = "partial"
    CONDITIONAL = "conditional"


class ChainDirection(Enum):
    """
    FORWARD follows from_id -> to_id (what the root responds to).
    BACKWARD follows to_id -> from_id (responses to the root).
    """
    FORWARD = "forward"
    BACKWARD = "backward"


@dataclass(frozen=True)
class RecordRef:
    """
    Identity metadata of a record, as needed to validate an edge.

    Kept separate from StoredObject so the graph never depends on the
    payload layout beyond these fields.
    """
    record_id: str
    agent_id: str
    session_id: str
    argument_type: Optional[ArgumentType] = None

    @staticmethod
    def from_object(stored: StoredObject) -> Result:
        """
        Extract identity metadata from a stored record.

        Expects payload keys ``agent_id`` and ``session_id`` and an
        optional ``argument_type``.
        """
        payload = stored.payload
        if not isinstance(payload, dict):
            return Result.fail(
                ErrorCode.INVALID_RELATIONSHIP,
                "Record payload is not an object",
                record_id=stored.id
            )

        agent_id = payload.get('agent_id')
        session_id = payload.get('session_id')
        if not isinstance(agent_id, str) or not agent_id:
            return Result.fail(
                ErrorCode.INVALID_RELATIONSHIP,
                "Record has no agent_id",
                record_id=stored.id
            )
        if not isinstance(session_id, str) or not session_id:
            return Result.fail(
                ErrorCode.INVALID_RELATIONSHIP,
                "Record has no session_id",
                record_id=stored.id
            )

        argument_type = None
        raw_type = payload.get('argument_type')
        if raw_type is not None:
            try:
                argument_type = ArgumentType(raw_type)
            except ValueError:
                return Result.fail(
                    ErrorCode.INVALID_RELATIONSHIP,
                    f"Unknown argument_type '{raw_type}'",
                    record_id=stored.id
                )

        return Result.success(RecordRef(
            record_id=stored.id,
            agent_id=agent_id,
            session_id=session_id,
            argument_type=argument_type
        ))


@dataclass(frozen=True)
class RelationshipEdge:
    """Immutable directed edge from a responding record to its target."""
    from_id: str
    to_id: str
    kind: RelationKind
    strength: float
    session_id: str
    subtype: Optional[str] = None

    def __post_init__(self):
        if not 0.0 <= self.strength <= 1.0:
            raise ValueError("strength must be between 0.0 and 1.0")


@dataclass(frozen=True)
class Chain:
    """
    Derived, read-only view of records reachable from a root.

    depth is the longest edge path (edge count) found from the root.
    """
    root_id: str
    records: Tuple[StoredObject, ...]
    relationships: Tuple[RelationshipEdge, ...]
    depth: int
    direction: ChainDirection = ChainDirection.FORWARD

    @property
    def record_ids(self) -> Tuple[str, ...]:
        return tuple(record.id for record in self.records)


# =============================================================================
# DEBATE LIFECYCLE
# =============================================================================

class DebateStatus(Enum):
    """
    Lifecycle of a debate session.

    active -> voting -> closed, and voting -> active. Closed is final.
    """
    ACTIVE = "active"
    VOTING = "voting"
    CLOSED = "closed"


@dataclass(frozen=True)
class CloseVote:
    """One participant's vote on closing the debate."""
    agent_id: str
    vote: bool
    cast_at: str
    reason: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'agent_id': self.agent_id,
            'vote': self.vote,
            'cast_at': self.cast_at,
        }
        if self.reason is not None:
            payload['reason'] = self.reason
        return payload


@dataclass(frozen=True)
class VoteTally:
    """Close-vote count against the participant list."""
    total: int
    required: int
    yes_votes: int
    no_votes: int
    has_consensus: bool


@dataclass(frozen=True)
class SessionState:
    """
    One revision of a session record.

    The first revision's record id is the debate id; arguments carry it
    as their ``session_id``. Each later revision is a new record naming
    the debate id and the record it supersedes.
    """
    record_id: str
    debate_id: str
    topic: str
    participants: Tuple[str, ...] = ()
    created_at: str = ''
    status: DebateStatus = DebateStatus.ACTIVE
    votes: Tuple[CloseVote, ...] = ()
    revision: int = 0
    previous_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'topic': self.topic,
            'participants': list(self.participants),
            'created_at': self.created_at,
            'status': self.status.value,
            'votes': [vote.to_payload() for vote in self.votes],
            'revision': self.revision,
        }
        if self.revision > 0:
            payload['debate_id'] = self.debate_id
            payload['previous_id'] = self.previous_id
        return payload

    @staticmethod
    def from_object(stored: StoredObject) -> Result:
        """Parse a session record. Fields other than ``topic`` are optional."""
        payload = stored.payload
        if not isinstance(payload, dict):
            return _invalid_session(stored.id, "payload is not an object")

        topic = payload.get('topic')
        if not isinstance(topic, str) or not topic.strip():
            return _invalid_session(stored.id, "topic is missing")

        participants = payload.get('participants', [])
        if not isinstance(participants, list) or not all(isinstance(p, str) for p in participants):
            return _invalid_session(stored.id, "participants must be a list of strings")

        try:
            status = DebateStatus(payload.get('status', DebateStatus.ACTIVE.value))
        except ValueError:
            return _invalid_session(stored.id, "unknown status")

        revision = payload.get('revision', 0)
        if isinstance(revision, bool) or not isinstance(revision, int) or revision < 0:
            return _invalid_session(stored.id, "revision must be a non-negative integer")

        debate_id = stored.id
        previous_id = None
        if revision > 0:
            debate_id = payload.get('debate_id')
            previous_id = payload.get('previous_id')
            if not isinstance(debate_id, str) or not isinstance(previous_id, str):
                return _invalid_session(stored.id, "revision does not name its debate")

        raw_votes = payload.get('votes', [])
        if not isinstance(raw_votes, list):
            return _invalid_session(stored.id, "votes must be a list")

        votes = []
        for entry in raw_votes:
            if (
                not isinstance(entry, dict)
                or not isinstance(entry.get('agent_id'), str)
                or not isinstance(entry.get('vote'), bool)
                or not isinstance(entry.get('cast_at'), str)
                or not isinstance(entry.get('reason', ''), str)
            ):
                return _invalid_session(stored.id, "votes are malformed")
            votes.append(CloseVote(
                agent_id=entry['agent_id'],
                vote=entry['vote'],
                cast_at=entry['cast_at'],
                reason=entry.get('reason')
            ))

        created_at = payload.get('created_at', '')
        return Result.success(SessionState(
            record_id=stored.id,
            debate_id=debate_id,
            topic=topic,
            participants=tuple(participants),
            created_at=created_at if isinstance(created_at, str) else '',
            status=status,
            votes=tuple(votes),
            revision=revision,
            previous_id=previous_id
        ))


def _invalid_session(record_id: str, reason: str) -> Result:
    return Result.fail(
        ErrorCode.INVALID_SESSION,
        f"Session record {record_id} is invalid: {reason}",
        record_id=record_id
    )


# =============================================================================
# AUDIT TYPES
# =============================================================================

class AuditEventType(Enum):
    """Explicit audit event types."""
    WRITE = "write"
    READ = "read"
    DELETE = "delete"
    REFERENCE = "reference"
    RELATIONSHIP = "relationship"
    ERROR = "error"
    SYSTEM = "system"


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable audit log entry. Metadata never carries filesystem paths."""
    entry_id: str
    event_type: AuditEventType
    timestamp: Timestamp
    layer: str  # Which layer generated this
    action: str
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None
    metadata: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MetricPoint:
    """Immutable metric data point."""
    metric_name: str
    value: float
    timestamp: Timestamp
    labels: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)
