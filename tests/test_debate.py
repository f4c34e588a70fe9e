"""
Debate Lifecycle Rule Tests

Status transitions, close-vote counting and argument structure checks,
all without storage.
"""

from dataclasses import replace

import pytest

from townhall.contracts import (
    ArgumentType,
    CloseVote,
    DebateStatus,
    ErrorCode,
    SessionState,
    StoredObject,
    Timestamp,
)
from townhall.core import can_transition, record_close_vote, tally_votes, validate_structure
from townhall.core.debate import resume, validate_content


CAST_AT = "2026-01-01T00:00:00+00:00"


def debate(participants=("agent-a", "agent-b"), **changes) -> SessionState:
    state = SessionState(
        record_id="d" * 64,
        debate_id="d" * 64,
        topic="Nuclear power",
        participants=tuple(participants)
    )
    return replace(state, **changes)


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

class TestTransitions:

    @pytest.mark.parametrize("from_status,to_status,allowed", [
        (DebateStatus.ACTIVE, DebateStatus.VOTING, True),
        (DebateStatus.VOTING, DebateStatus.CLOSED, True),
        (DebateStatus.VOTING, DebateStatus.ACTIVE, True),
        (DebateStatus.ACTIVE, DebateStatus.CLOSED, False),
        (DebateStatus.CLOSED, DebateStatus.ACTIVE, False),
        (DebateStatus.CLOSED, DebateStatus.VOTING, False),
    ])
    def test_transition_table(self, from_status, to_status, allowed):
        assert can_transition(from_status, to_status) is allowed

    def test_resume_clears_votes_and_links_revision(self):
        voting = debate(
            status=DebateStatus.VOTING,
            votes=(CloseVote("agent-a", False, CAST_AT),)
        )

        resumed = resume(voting).value

        assert resumed.status == DebateStatus.ACTIVE
        assert resumed.votes == ()
        assert resumed.revision == 1
        assert resumed.previous_id == voting.record_id
        assert resumed.record_id == ''

    def test_closed_debate_cannot_resume(self):
        result = resume(debate(status=DebateStatus.CLOSED))
        assert result.error.code == ErrorCode.INVALID_TRANSITION


# =============================================================================
# CLOSE VOTES
# =============================================================================

class TestCloseVotes:

    def test_first_vote_opens_voting(self):
        state = record_close_vote(debate(), "agent-a", True, CAST_AT).value

        assert state.status == DebateStatus.VOTING
        tally = tally_votes(state)
        assert (tally.total, tally.required, tally.yes_votes, tally.has_consensus) == (1, 2, 1, False)

    def test_unanimity_closes(self):
        state = record_close_vote(debate(), "agent-a", True, CAST_AT).value
        state = record_close_vote(state, "agent-b", True, CAST_AT, "Done").value

        assert state.status == DebateStatus.CLOSED
        assert state.revision == 2
        assert state.votes[-1].reason == "Done"

    def test_single_participant_closes_in_one_vote(self):
        state = record_close_vote(debate(participants=("agent-a",)), "agent-a", True, CAST_AT).value

        assert state.status == DebateStatus.CLOSED
        assert state.revision == 1

    def test_no_vote_blocks_consensus(self):
        state = record_close_vote(debate(), "agent-a", False, CAST_AT).value
        state = record_close_vote(state, "agent-b", True, CAST_AT).value

        assert state.status == DebateStatus.VOTING
        tally = tally_votes(state)
        assert (tally.yes_votes, tally.no_votes, tally.has_consensus) == (1, 1, False)

    def test_no_participants_never_reach_consensus(self):
        assert tally_votes(debate(participants=())).has_consensus is False

    @pytest.mark.parametrize("state,agent_id,code", [
        (debate(), "agent-z", ErrorCode.VOTE_REJECTED),
        (debate(votes=(CloseVote("agent-a", True, CAST_AT),), status=DebateStatus.VOTING),
         "agent-a", ErrorCode.VOTE_REJECTED),
        (debate(status=DebateStatus.CLOSED), "agent-a", ErrorCode.SESSION_NOT_ACTIVE),
    ])
    def test_rejected_votes(self, state, agent_id, code):
        assert record_close_vote(state, agent_id, True, CAST_AT).error.code == code


# =============================================================================
# SESSION RECORDS
# =============================================================================

class TestSessionRecords:

    def stored(self, payload, record_id="e" * 64):
        return StoredObject(
            id=record_id,
            bucket="simulations",
            payload=payload,
            stored_at=Timestamp.now()
        )

    def test_bare_topic_is_an_active_first_revision(self):
        state = SessionState.from_object(self.stored({"topic": "X"})).value

        assert state.status == DebateStatus.ACTIVE
        assert state.debate_id == "e" * 64
        assert (state.revision, state.votes, state.participants) == (0, (), ())

    def test_revision_round_trips(self):
        closing = record_close_vote(debate(), "agent-a", True, CAST_AT, "Enough").value

        parsed = SessionState.from_object(self.stored(closing.to_payload())).value

        assert parsed.debate_id == "d" * 64
        assert parsed.previous_id == "d" * 64
        assert parsed.votes == closing.votes
        assert parsed.status == DebateStatus.VOTING

    @pytest.mark.parametrize("payload", [
        ["not", "an", "object"],
        {"participants": []},
        {"topic": "X", "status": "archived"},
        {"topic": "X", "revision": -1},
        {"topic": "X", "revision": 1},
        {"topic": "X", "votes": [{"agent_id": "a", "vote": "yes", "cast_at": CAST_AT}]},
    ])
    def test_malformed_records_rejected(self, payload):
        result = SessionState.from_object(self.stored(payload))
        assert result.error.code == ErrorCode.INVALID_SESSION


# =============================================================================
# ARGUMENT STRUCTURE
# =============================================================================

class TestStructure:

    @pytest.mark.parametrize("argument_type,structure", [
        (ArgumentType.DEDUCTIVE, {"premises": ["p1", "p2"], "conclusion": "c"}),
        (ArgumentType.INDUCTIVE, {"observations": ["o1", "o2"], "generalization": "g"}),
        (ArgumentType.INDUCTIVE, {"observations": ["o1", "o2"], "generalization": "g", "confidence": 1}),
        ("empirical", {"evidence": [{"source": "IEA", "relevance": "cost data"}], "claim": "c"}),
    ])
    def test_complete_structures_pass(self, argument_type, structure):
        assert validate_structure(argument_type, structure).is_success

    @pytest.mark.parametrize("argument_type,structure", [
        (ArgumentType.DEDUCTIVE, {"premises": ["p1"], "conclusion": "c"}),
        (ArgumentType.DEDUCTIVE, {"premises": ["p1", "  "], "conclusion": "c"}),
        (ArgumentType.DEDUCTIVE, {"premises": ["p1", "p2"]}),
        (ArgumentType.INDUCTIVE, {"observations": ["o1", "o2"]}),
        (ArgumentType.INDUCTIVE, {"observations": ["o1", "o2"], "generalization": "g", "confidence": 1.5}),
        (ArgumentType.INDUCTIVE, {"observations": ["o1", "o2"], "generalization": "g", "confidence": True}),
        (ArgumentType.EMPIRICAL, {"evidence": [], "claim": "c"}),
        (ArgumentType.EMPIRICAL, {"evidence": [{"source": "IEA"}], "claim": "c"}),
        (ArgumentType.EMPIRICAL, {"evidence": [{"source": "IEA", "relevance": "r"}]}),
        (ArgumentType.EMPIRICAL, "evidence"),
    ])
    def test_incomplete_structures_rejected(self, argument_type, structure):
        assert validate_structure(argument_type, structure).error.code == ErrorCode.INVALID_STRUCTURE

    def test_unknown_type(self):
        result = validate_structure("anecdotal", {})
        assert result.error.code == ErrorCode.INVALID_PAYLOAD

    def test_content_length_limit(self):
        assert validate_content("x" * 10000).is_success
        assert validate_content("x" * 10001).error.code == ErrorCode.INVALID_PAYLOAD
        assert validate_content("   ").error.code == ErrorCode.INVALID_PAYLOAD
