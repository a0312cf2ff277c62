# leasing_engine/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .domain.leasing_states import APPLICATION_TYPES, PRIORITIES


# -------------------- Applications --------------------

class PartyIn(BaseModel):
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class ApplicationStartIn(BaseModel):
    property_id: int
    unit_id: Optional[int] = None
    application_type: str = "INDIVIDUAL"
    priority: str = "STANDARD"
    relocation_status: Optional[str] = None
    primary: PartyIn
    form_data: dict[str, Any] = Field(default_factory=dict)
    progress_map: dict[str, Any] = Field(default_factory=dict)
    current_step: Optional[str] = None

    @model_validator(mode="after")
    def _check_enums(self) -> "ApplicationStartIn":
        self.application_type = (self.application_type or "INDIVIDUAL").strip().upper()
        self.priority = (self.priority or "STANDARD").strip().upper()
        if self.application_type not in APPLICATION_TYPES:
            raise ValueError(f"application_type must be one of {', '.join(APPLICATION_TYPES)}")
        if self.priority not in PRIORITIES:
            raise ValueError(f"priority must be one of {', '.join(PRIORITIES)}")
        return self


class DraftAutosaveIn(BaseModel):
    session_token: str
    form_data_patch: Optional[dict[str, Any]] = None
    progress_map_patch: Optional[dict[str, Any]] = None
    current_step: Optional[str] = None


class DraftResumeIn(BaseModel):
    session_token: str


class PartyInviteIn(PartyIn):
    role: str
    current_step: Optional[str] = None


class ConsentIn(BaseModel):
    party_id: int
    signature: str
    ip: Optional[str] = None


class SubmitIn(BaseModel):
    consent: Optional[ConsentIn] = None
    jurisdiction_code: Optional[str] = None


class WithdrawIn(BaseModel):
    reason_code: Optional[str] = None
    reason: Optional[str] = None
    jurisdiction_code: Optional[str] = None


# -------------------- Payments / Refunds --------------------

class FeeIntentIn(BaseModel):
    amount_cents: int = Field(gt=0)
    currency: str = "USD"
    metadata: Optional[dict[str, Any]] = None


class FeeConfirmIn(BaseModel):
    # stub adapter reads "outcome"; real providers read their own keys
    confirmation: dict[str, Any] = Field(default_factory=dict)


class RefundRequestIn(BaseModel):
    payment_intent_id: int
    requested_amount_cents: Optional[int] = Field(default=None, ge=0)
    reason: Optional[str] = None
    jurisdiction_code: Optional[str] = None


class RefundReviewIn(BaseModel):
    status: str  # APPROVED|DENIED
    approved_amount_cents: Optional[int] = Field(default=None, ge=0)
    review_notes: Optional[str] = None


class RefundProcessIn(BaseModel):
    provider_refund_id: Optional[str] = None


class RefundFailIn(BaseModel):
    failure_reason: Optional[str] = None


# -------------------- Reservations --------------------

class ReservationIn(BaseModel):
    application_id: int
    unit_id: int
    kind: str = "SCREENING_LOCK"  # SCREENING_LOCK|SOFT_HOLD
    expires_at: Optional[datetime] = None


class ReservationReleaseIn(BaseModel):
    release_reason_code: str
    released_reason: Optional[str] = None


# -------------------- Requirements / Info requests --------------------

class RequirementGenerateIn(BaseModel):
    jurisdiction_code: Optional[str] = None


class DocumentAttachIn(BaseModel):
    party_id: int
    file_name: str
    size_bytes: int = Field(ge=0)
    document_type: Optional[str] = None
    mime_type: Optional[str] = None
    storage_key: Optional[str] = None
    requirement_item_id: Optional[int] = None
    valid_until: Optional[datetime] = None


class DocumentVerifyIn(BaseModel):
    action: str  # VERIFY|REJECT
    rejected_reason: Optional[str] = None


class WaiveIn(BaseModel):
    reason: Optional[str] = None


class InfoRequestItemIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    requirement_type: str = Field(default="CUSTOM", alias="requirementType")
    document_type: Optional[str] = Field(default=None, alias="documentType")
    party_id: Optional[int] = Field(default=None, alias="partyId")
    is_required: bool = Field(default=True, alias="isRequired")
    due_in_days: Optional[int] = Field(default=None, alias="dueInDays")
    alternatives: Optional[List[Any]] = None

    def as_item(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class InfoRequestIn(BaseModel):
    items: List[InfoRequestItemIn] = Field(default_factory=list)
    target_party_id: Optional[int] = None
    message: Optional[str] = None
    unlock_scopes: Optional[List[str]] = None


class InfoRequestRespondIn(BaseModel):
    response_message: Optional[str] = None


# -------------------- Decisions / scores / overrides / notes --------------------

class DecisionIn(BaseModel):
    outcome: str
    criteria_version: Optional[str] = None
    reason_codes: List[Any] = Field(default_factory=list)
    income: Optional[dict[str, Any]] = None
    criminal: Optional[dict[str, Any]] = None
    conditions: List[Any] = Field(default_factory=list)
    notes: Optional[str] = None
    override_request_id: Optional[int] = None
    previous_decision_id: Optional[int] = None


class ScoreIn(BaseModel):
    score_value: Optional[float] = None
    max_score: Optional[float] = None
    score_type: Optional[str] = None
    factors: Optional[dict[str, Any]] = None


class PriorityOverrideIn(BaseModel):
    requested_priority: str
    reason: Optional[str] = None


class OverrideReviewIn(BaseModel):
    status: str  # APPROVED|DENIED
    review_notes: Optional[str] = None


class NoteIn(BaseModel):
    body: str = Field(min_length=1)
    visibility: Optional[str] = None
    is_pinned: bool = False


class NoteUpdateIn(BaseModel):
    body: Optional[str] = None
    visibility: Optional[str] = None
    is_pinned: Optional[bool] = None


# -------------------- Queue --------------------

class QueueQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=25, ge=1, le=100)
    statuses: Optional[List[str]] = None
    property_ids: Optional[List[int]] = None
    priorities: Optional[List[str]] = None
    unit_types: Optional[List[str]] = None
    q: Optional[str] = None
    sort: Optional[str] = None

    stale: bool = False
    missing_docs: bool = False
    payment_issue: bool = False
    has_reservation: bool = False
    high_risk: bool = False
    duplicate: bool = False

    def flags(self) -> dict[str, bool]:
        return {
            "stale": self.stale,
            "missing_docs": self.missing_docs,
            "payment_issue": self.payment_issue,
            "has_reservation": self.has_reservation,
            "high_risk": self.high_risk,
            "duplicate": self.duplicate,
        }


# -------------------- Assistant --------------------

class AssistantActionIn(BaseModel):
    action_key: str
    reason_code: str
    reason: Optional[str] = None
    template_key: Optional[str] = None
