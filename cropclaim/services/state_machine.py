"""
Claim State Machine
-------------------
The one transition table every engine component consults.

    SUBMITTED ──assign──▶ ASSIGNED
    SUBMITTED/ASSIGNED ──assessment──▶ AI_PROCESSED
    AI_PROCESSED ──draft──▶ UNDER_REVIEW ──draft──▶ UNDER_REVIEW
    AI_PROCESSED/UNDER_REVIEW ──decision──▶ DECIDED
    DECIDED(approve|partial) ──release──▶ PAYOUT_PENDING ──payout──▶ PAID
    DECIDED(reject) ──release──▶ CLOSED

Any (state, operation) pair missing from the table raises InvalidStateError.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple, Union

from cropclaim.exceptions import InvalidStateError
from cropclaim.models.claim import ClaimStatus, DecisionOutcome, TERMINAL_STATES


class Operation(str, Enum):
    """Engine operations that move (or may move) a claim between states."""
    ASSIGN_REVIEWER = "assign_reviewer"
    RECORD_ASSESSMENT = "receive_assessment_result"
    SAVE_DRAFT = "save_draft"
    SUBMIT_DECISION = "submit_decision"
    RELEASE = "release_for_settlement"
    PROCESS_PAYOUT = "process_payout"


S = ClaimStatus

TRANSITIONS: Dict[Tuple[ClaimStatus, Operation], ClaimStatus] = {
    (S.SUBMITTED, Operation.ASSIGN_REVIEWER): S.ASSIGNED,
    (S.SUBMITTED, Operation.RECORD_ASSESSMENT): S.AI_PROCESSED,
    (S.ASSIGNED, Operation.RECORD_ASSESSMENT): S.AI_PROCESSED,
    (S.AI_PROCESSED, Operation.SAVE_DRAFT): S.UNDER_REVIEW,
    (S.UNDER_REVIEW, Operation.SAVE_DRAFT): S.UNDER_REVIEW,
    (S.AI_PROCESSED, Operation.SUBMIT_DECISION): S.DECIDED,
    (S.UNDER_REVIEW, Operation.SUBMIT_DECISION): S.DECIDED,
    (S.PAYOUT_PENDING, Operation.PROCESS_PAYOUT): S.PAID,
}

# DECIDED's exit depends on the recorded outcome
RELEASE_TARGETS: Dict[DecisionOutcome, ClaimStatus] = {
    DecisionOutcome.APPROVE: S.PAYOUT_PENDING,
    DecisionOutcome.PARTIAL: S.PAYOUT_PENDING,
    DecisionOutcome.REJECT: S.CLOSED,
}

# Non-transition operations and the states they are allowed in
NON_TERMINAL: FrozenSet[ClaimStatus] = frozenset(s for s in ClaimStatus if s not in TERMINAL_STATES)
ASSESSMENT_DISPATCH_STATES: FrozenSet[ClaimStatus] = frozenset(
    {S.SUBMITTED, S.ASSIGNED, S.AI_PROCESSED, S.UNDER_REVIEW}
)


def _as_status(state: Union[str, ClaimStatus]) -> ClaimStatus:
    return state if isinstance(state, ClaimStatus) else ClaimStatus(state)


def next_state(
    state: Union[str, ClaimStatus],
    operation: Operation,
    outcome: Optional[Union[str, DecisionOutcome]] = None,
    claim_id: Optional[str] = None,
) -> ClaimStatus:
    """Resolve the target state or raise InvalidStateError."""
    current = _as_status(state)
    if operation == Operation.RELEASE:
        if current == S.DECIDED and outcome is not None:
            return RELEASE_TARGETS[DecisionOutcome(outcome)]
        raise InvalidStateError(operation.value, current.value, claim_id=claim_id)

    target = TRANSITIONS.get((current, operation))
    if target is None:
        raise InvalidStateError(operation.value, current.value, claim_id=claim_id)
    return target


def can_apply(state: Union[str, ClaimStatus], operation: Operation) -> bool:
    current = _as_status(state)
    if operation == Operation.RELEASE:
        return current == S.DECIDED
    return (current, operation) in TRANSITIONS


def is_terminal(state: Union[str, ClaimStatus]) -> bool:
    return _as_status(state) in TERMINAL_STATES


def ensure_in(state: Union[str, ClaimStatus], allowed: FrozenSet[ClaimStatus], operation: str,
              claim_id: Optional[str] = None) -> ClaimStatus:
    """Guard for operations that never change state (flagging, dispatch)."""
    current = _as_status(state)
    if current not in allowed:
        raise InvalidStateError(operation, current.value, claim_id=claim_id)
    return current
