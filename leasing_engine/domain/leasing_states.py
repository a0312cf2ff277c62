# leasing_engine/domain/leasing_states.py
"""
Status vocabularies for the leasing aggregate.

Kept as plain string constants (the DB stores strings); the sets below are the
ones services branch on.
"""
from __future__ import annotations

APPLICATION_STATUSES = (
    "DRAFT",
    "SUBMITTED",
    "IN_REVIEW",
    "NEEDS_INFO",
    "DECISIONED",
    "CONVERTED",
    "CLOSED",
)

# statuses where staff are actively working the file
OPEN_REVIEW_STATUSES = frozenset({"SUBMITTED", "IN_REVIEW", "NEEDS_INFO"})
TERMINAL_STATUSES = frozenset({"CLOSED", "CONVERTED"})

APPLICATION_TYPES = ("INDIVIDUAL", "JOINT")
PRIORITIES = ("STANDARD", "PRIORITY", "EMERGENCY")
PRIORITY_RANK = {"EMERGENCY": 3, "PRIORITY": 2, "STANDARD": 1}

PARTY_ROLES = ("PRIMARY", "CO_APPLICANT", "OCCUPANT", "GUARANTOR")
PARTY_STATUSES = ("IN_PROGRESS", "INVITED", "COMPLETE", "LOCKED")
PARTY_DONE_STATUSES = frozenset({"COMPLETE", "LOCKED"})

REQUIREMENT_TYPES = ("DOCUMENT", "SCREENING", "PAYMENT", "SIGNATURE", "VERIFICATION", "CUSTOM")
REQUIREMENT_STATUSES = ("PENDING", "IN_PROGRESS", "SUBMITTED", "APPROVED", "REJECTED", "WAIVED", "EXPIRED")
REQUIREMENT_SATISFIED = frozenset({"APPROVED", "WAIVED"})

RESERVATION_KINDS = ("SCREENING_LOCK", "SOFT_HOLD", "HARD_HOLD")
HOLD_KINDS = ("SOFT_HOLD", "HARD_HOLD")

PAYMENT_IN_FLIGHT = frozenset({"REQUIRES_ACTION", "PROCESSING"})
PAYMENT_PROBLEM_STATUSES = frozenset({"FAILED", "CANCELED"})

DECISION_OUTCOMES = ("APPROVED", "APPROVED_WITH_CONDITIONS", "DENIED", "WITHDRAWN_BY_STAFF")
APPROVING_OUTCOMES = frozenset({"APPROVED", "APPROVED_WITH_CONDITIONS"})

UNIT_INTAKE_MODES = ("OPEN", "LOCK_ON_SUBMIT", "CAP_N_SUBMITS")

NOTE_VISIBILITIES = ("INTERNAL_STAFF_ONLY", "SHARED_WITH_APPLICANT", "SHARED_WITH_PARTIES", "PUBLIC")
