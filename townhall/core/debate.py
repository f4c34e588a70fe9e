"""
Debate Lifecycle
================

Pure rules for session status, close votes and argument structure.

STATUS:
- active -> voting (first close vote)
- voting -> closed (unanimous yes from every participant)
- voting -> active (debate resumed, votes discarded)
- closed is terminal

Nothing here touches storage. Each update returns a new SessionState
that the engine persists as the next revision of the session record.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Any, Dict, Optional, Set, Union

from ..contracts.base import ErrorCode, Result
from ..contracts.records import (
    ArgumentType,
    CloseVote,
    DebateStatus,
    SessionState,
    VoteTally,
)


MAX_CONTENT_LENGTH = 10000

MIN_PREMISES = 2
MIN_OBSERVATIONS = 2
MIN_EVIDENCE = 1

_VALID_TRANSITIONS: Dict[DebateStatus, Set[DebateStatus]] = {
    DebateStatus.ACTIVE: {DebateStatus.VOTING},
    DebateStatus.VOTING: {DebateStatus.CLOSED, DebateStatus.ACTIVE},
    DebateStatus.CLOSED: set(),
}


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def can_transition(from_status: DebateStatus, to_status: DebateStatus) -> bool:
    return to_status in _VALID_TRANSITIONS[from_status]


def advance(state: SessionState, status: DebateStatus, **changes: Any) -> Result:
    """
    Next revision of ``state`` with ``status``.

    The new state has no record id yet; it is assigned once stored.
    """
    if status != state.status and not can_transition(state.status, status):
        return Result.fail(
            ErrorCode.INVALID_TRANSITION,
            f"Cannot move debate from {state.status.value} to {status.value}",
            debate_id=state.debate_id
        )
    return Result.success(replace(
        state,
        record_id='',
        status=status,
        revision=state.revision + 1,
        previous_id=state.record_id,
        **changes
    ))


def require_open(state: SessionState) -> Result:
    """Arguments and responses are only accepted while the debate is active."""
    if state.status != DebateStatus.ACTIVE:
        return Result.fail(
            ErrorCode.SESSION_NOT_ACTIVE,
            f"Debate is {state.status.value}, not accepting arguments",
            debate_id=state.debate_id
        )
    return Result.success(state)


def resume(state: SessionState) -> Result:
    """Return a voting debate to active and discard its votes."""
    if state.status != DebateStatus.VOTING:
        return Result.fail(
            ErrorCode.INVALID_TRANSITION,
            f"Only a debate in voting can resume, this one is {state.status.value}",
            debate_id=state.debate_id
        )
    return advance(state, DebateStatus.ACTIVE, votes=())


# =============================================================================
# CLOSE VOTES
# =============================================================================

def tally_votes(state: SessionState) -> VoteTally:
    """
    Count close votes. Consensus needs a yes from every participant.

    A debate without participants can never reach consensus.
    """
    required = len(state.participants)
    yes_votes = sum(1 for v in state.votes if v.vote)
    return VoteTally(
        total=len(state.votes),
        required=required,
        yes_votes=yes_votes,
        no_votes=len(state.votes) - yes_votes,
        has_consensus=required > 0 and yes_votes == required
    )


def validate_vote(state: SessionState, agent_id: str) -> Result:
    if state.status == DebateStatus.CLOSED:
        return Result.fail(
            ErrorCode.SESSION_NOT_ACTIVE,
            "Debate is already closed",
            debate_id=state.debate_id
        )
    if agent_id not in state.participants:
        return Result.fail(
            ErrorCode.VOTE_REJECTED,
            f"Agent {agent_id} is not a participant",
            agent_id=agent_id
        )
    if any(v.agent_id == agent_id for v in state.votes):
        return Result.fail(
            ErrorCode.VOTE_REJECTED,
            f"Agent {agent_id} has already voted",
            agent_id=agent_id
        )
    return Result.success(agent_id)


def record_close_vote(
    state: SessionState,
    agent_id: str,
    vote: bool,
    cast_at: str,
    reason: Optional[str] = None
) -> Result:
    """
    Add a vote and move the debate on.

    The first vote opens voting; unanimous agreement closes the debate.
    """
    allowed = validate_vote(state, agent_id)
    if allowed.is_failure:
        return allowed

    votes = state.votes + (CloseVote(agent_id=agent_id, vote=vote, cast_at=cast_at, reason=reason),)
    counted = tally_votes(replace(state, votes=votes))
    status = DebateStatus.CLOSED if counted.has_consensus else DebateStatus.VOTING

    voting = state
    if state.status == DebateStatus.ACTIVE:
        voting = replace(state, status=DebateStatus.VOTING)
    return advance(voting, status, votes=votes)


# =============================================================================
# ARGUMENT STRUCTURE
# =============================================================================

def _structure_error(argument_type: ArgumentType, message: str) -> Result:
    return Result.fail(
        ErrorCode.INVALID_STRUCTURE,
        f"{argument_type.value.capitalize()} argument {message}",
        argument_type=argument_type.value
    )


def _filled(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def validate_content(content: Any) -> Result:
    if not _filled(content):
        return Result.fail(ErrorCode.INVALID_PAYLOAD, "Argument content cannot be empty")
    if len(content) > MAX_CONTENT_LENGTH:
        return Result.fail(
            ErrorCode.INVALID_PAYLOAD,
            f"Argument content exceeds {MAX_CONTENT_LENGTH} characters",
            length=len(content)
        )
    return Result.success(content)


def validate_structure(
    argument_type: Union[ArgumentType, str],
    structure: Any
) -> Result:
    """
    Check the reasoning structure an argument type requires.

    - deductive: ``premises`` (at least 2) and a ``conclusion``
    - inductive: ``observations`` (at least 2), a ``generalization`` and
      an optional ``confidence`` in [0, 1]
    - empirical: ``evidence`` items (at least 1) each with ``source`` and
      ``relevance``, and a ``claim``

    Every text field must be a non-empty string.
    """
    try:
        argument_type = ArgumentType(argument_type)
    except ValueError:
        return Result.fail(ErrorCode.INVALID_PAYLOAD, f"Unknown argument type '{argument_type}'")

    if not isinstance(structure, dict):
        return _structure_error(argument_type, "structure must be an object")

    if argument_type == ArgumentType.DEDUCTIVE:
        premises = structure.get('premises')
        if not isinstance(premises, list) or len(premises) < MIN_PREMISES:
            return _structure_error(argument_type, f"needs at least {MIN_PREMISES} premises")
        if not all(_filled(p) for p in premises):
            return _structure_error(argument_type, "premises cannot be empty")
        if not _filled(structure.get('conclusion')):
            return _structure_error(argument_type, "needs a conclusion")

    elif argument_type == ArgumentType.INDUCTIVE:
        observations = structure.get('observations')
        if not isinstance(observations, list) or len(observations) < MIN_OBSERVATIONS:
            return _structure_error(argument_type, f"needs at least {MIN_OBSERVATIONS} observations")
        if not all(_filled(o) for o in observations):
            return _structure_error(argument_type, "observations cannot be empty")
        if not _filled(structure.get('generalization')):
            return _structure_error(argument_type, "needs a generalization")
        confidence = structure.get('confidence')
        if confidence is not None:
            if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
                return _structure_error(argument_type, "confidence must be a number")
            if not 0 <= confidence <= 1:
                return _structure_error(argument_type, "confidence must be between 0 and 1")

    else:
        evidence = structure.get('evidence')
        if not isinstance(evidence, list) or len(evidence) < MIN_EVIDENCE:
            return _structure_error(argument_type, f"needs at least {MIN_EVIDENCE} evidence item")
        for item in evidence:
            if not isinstance(item, dict) or not _filled(item.get('source')):
                return _structure_error(argument_type, "evidence needs a source")
            if not _filled(item.get('relevance')):
                return _structure_error(argument_type, "evidence needs its relevance")
        if not _filled(structure.get('claim')):
            return _structure_error(argument_type, "needs a claim")

    return Result.success(structure)
