"""
Core Relationship Layer

RESPONSIBILITY: Edge validation, strength scoring, cycle detection, chains,
debate status and close-vote rules, argument structure checks
ALLOWED INPUTS: RecordRef identity metadata and RelationshipEdge sets
OUTPUTS: RelationshipEdge and Chain values (immutable)

WHAT THIS LAYER MUST NOT DO:
============================
- Persist data (edges are derived from stored records)
- Read payloads beyond agent/session/argument-type metadata
- Rank or judge arguments beyond the fixed strength table

BOUNDARY ENFORCEMENT:
=====================
- The graph is acyclic after every successful call
- A rejected edge never changes graph state
"""

from .debate import (
    can_transition,
    record_close_vote,
    tally_votes,
    validate_structure,
)
from .relationships import (
    RelationshipGraph,
    build_chain,
    compute_strength,
    detect_circular_references,
    find_concession_targets,
    find_direct_relationships,
    find_rebuttal_targets,
)

__all__ = [
    'RelationshipGraph',
    'build_chain',
    'can_transition',
    'compute_strength',
    'detect_circular_references',
    'find_concession_targets',
    'find_direct_relationships',
    'find_rebuttal_targets',
    'record_close_vote',
    'tally_votes',
    'validate_structure',
]
