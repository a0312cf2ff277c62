# leasing_engine/models.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


# -----------------------------
# Multitenant tables
# -----------------------------
class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(80), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class AppUser(Base):
    __tablename__ = "app_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class OrgMembership(Base):
    __tablename__ = "org_memberships"
    __table_args__ = (UniqueConstraint("org_id", "user_id", name="uq_org_memberships_org_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), index=True, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="owner")  # owner|operator|analyst
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Inventory
# -----------------------------
class Property(Base):
    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(160), nullable=False)
    site_code: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    jurisdiction_code: Mapped[Optional[str]] = mapped_column(String(40), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Unit(Base):
    __tablename__ = "units"
    __table_args__ = (UniqueConstraint("property_id", "unit_code", name="uq_units_property_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    property_id: Mapped[int] = mapped_column(Integer, ForeignKey("properties.id"), nullable=False, index=True)

    unit_code: Mapped[str] = mapped_column(String(40), nullable=False)
    unit_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # STUDIO|ONE_BED|TWO_BED
    bedrooms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Versioned configuration
# -----------------------------
class WorkflowConfig(Base):
    __tablename__ = "workflow_configs"
    __table_args__ = (Index("ix_workflow_configs_scope", "org_id", "property_id", "jurisdiction_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    property_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("properties.id"), nullable=True)
    jurisdiction_code: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    config_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    effective_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class ConsentTemplate(Base):
    __tablename__ = "screening_consent_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # NULL org_id = global template
    org_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    effective_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class RefundPolicy(Base):
    __tablename__ = "refund_policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    jurisdiction_code: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    payment_type: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    # NO_REFUND|FULL_REFUND|PARTIAL_REFUND|TIME_BASED
    policy_type: Mapped[str] = mapped_column(String(30), nullable=False)
    refund_percentage: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    refund_window_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    effective_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Application aggregate
# -----------------------------
class LeaseApplication(Base):
    __tablename__ = "lease_applications"
    __table_args__ = (
        Index("ix_lease_applications_org_status", "org_id", "status"),
        Index("ix_lease_applications_dupe", "org_id", "duplicate_check_hash"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    property_id: Mapped[int] = mapped_column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    unit_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("units.id"), nullable=True, index=True)

    application_type: Mapped[str] = mapped_column(String(20), nullable=False, default="INDIVIDUAL")  # INDIVIDUAL|JOINT
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="STANDARD")
    relocation_status: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    duplicate_check_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    application_fee_status: Mapped[str] = mapped_column(String(20), nullable=False, default="NOT_REQUIRED")

    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    decisioned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    converted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    closed_reason: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)  # WITHDRAWN|EXPIRED|DRAFT_EXPIRED

    withdrawn_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    withdrawn_reason_code: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    withdrawn_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    unit_availability_snapshot_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    unit_availability_verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    unit_was_available_at_submit: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class ApplicationParty(Base):
    __tablename__ = "application_parties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lease_applications.id"), nullable=False, index=True
    )

    role: Mapped[str] = mapped_column(String(20), nullable=False)  # PRIMARY|CO_APPLICANT|OCCUPANT|GUARANTOR
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="IN_PROGRESS")

    first_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    invite_token: Mapped[Optional[str]] = mapped_column(String(80), nullable=True, unique=True)
    invite_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    screening_consent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    screening_consent_template_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("screening_consent_templates.id"), nullable=True
    )
    screening_consent_template_version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    screening_consent_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    screening_consent_signature: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    reminder_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reminder_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    abandoned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    abandoned_reason_code: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class DraftSession(Base):
    __tablename__ = "application_draft_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lease_applications.id"), nullable=False, index=True
    )
    party_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("application_parties.id"), nullable=True)

    token: Mapped[str] = mapped_column(String(80), nullable=False, unique=True, index=True)
    form_data_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    progress_map_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    current_step: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    last_saved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Requirements, documents, info requests
# -----------------------------
class InfoRequest(Base):
    __tablename__ = "info_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lease_applications.id"), nullable=False, index=True
    )
    target_party_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("application_parties.id"), nullable=True
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="OPEN")  # OPEN|RESPONDED
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requested_items_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    unlock_scopes_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")

    requested_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    responded_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    response_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class RequirementItem(Base):
    __tablename__ = "requirement_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lease_applications.id"), nullable=False, index=True
    )
    party_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("application_parties.id"), nullable=True)
    info_request_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("info_requests.id"), nullable=True)

    # DOCUMENT|SCREENING|PAYMENT|SIGNATURE|VERIFICATION|CUSTOM
    requirement_type: Mapped[str] = mapped_column(String(20), nullable=False, default="CUSTOM")
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    waived_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    waived_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    waived_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lease_applications.id"), nullable=False, index=True
    )
    party_id: Mapped[int] = mapped_column(Integer, ForeignKey("application_parties.id"), nullable=False)
    requirement_item_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("requirement_items.id"), nullable=True, index=True
    )

    document_type: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_key: Mapped[Optional[str]] = mapped_column(String(400), nullable=True)
    mime_type: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    size_bytes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # UPLOADED|VERIFIED|REJECTED|EXPIRED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="UPLOADED")
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    verified_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rejected_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    valid_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


# -----------------------------
# Unit reservations
# -----------------------------
class UnitReservation(Base):
    __tablename__ = "unit_reservations"
    __table_args__ = (
        # At most one ACTIVE screening lock per unit. This index is the lock.
        Index(
            "uq_unit_reservations_active_screening_lock",
            "unit_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE' AND kind = 'SCREENING_LOCK'"),
            sqlite_where=text("status = 'ACTIVE' AND kind = 'SCREENING_LOCK'"),
        ),
        Index("ix_unit_reservations_unit_status", "unit_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    unit_id: Mapped[int] = mapped_column(Integer, ForeignKey("units.id"), nullable=False)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lease_applications.id"), nullable=False, index=True
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)  # SCREENING_LOCK|SOFT_HOLD|HARD_HOLD
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")  # ACTIVE|RELEASED|EXPIRED
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    released_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    release_reason_code: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    released_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    converted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


# -----------------------------
# Payments + refunds
# -----------------------------
class PaymentIntent(Base):
    __tablename__ = "payment_intents"
    __table_args__ = (Index("ix_payment_intents_app_type", "application_id", "payment_type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(Integer, ForeignKey("lease_applications.id"), nullable=False)

    payment_type: Mapped[str] = mapped_column(String(40), nullable=False, default="APPLICATION_FEE")
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    provider: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    provider_reference: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    client_secret: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # REQUIRES_ACTION|PROCESSING|SUCCEEDED|FAILED|CANCELED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="REQUIRES_ACTION")
    attempts_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_failure_code: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    last_failure_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_failure_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class PaymentAttempt(Base):
    __tablename__ = "payment_intent_attempts"
    __table_args__ = (
        UniqueConstraint("payment_intent_id", "attempt_number", name="uq_payment_attempts_intent_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    payment_intent_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("payment_intents.id"), nullable=False, index=True
    )
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    provider: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    provider_reference: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    request_payload_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    response_payload_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_code: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    failure_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class RefundRequest(Base):
    __tablename__ = "refund_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lease_applications.id"), nullable=False, index=True
    )
    payment_intent_id: Mapped[int] = mapped_column(Integer, ForeignKey("payment_intents.id"), nullable=False)

    # decision snapshot
    policy_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("refund_policies.id"), nullable=True)
    policy_version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reason_code: Mapped[str] = mapped_column(String(40), nullable=False)
    eligible_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    requested_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    approved_amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    # PENDING|APPROVED|DENIED|PROCESSED|FAILED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requested_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reviewed_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    provider_refund_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


# -----------------------------
# Decisioning
# -----------------------------
class OverrideRequest(Base):
    __tablename__ = "override_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lease_applications.id"), nullable=False, index=True
    )

    override_type: Mapped[str] = mapped_column(String(20), nullable=False)  # PRIORITY|DECISION
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")  # PENDING|APPROVED|DENIED
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    before_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    after_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    requested_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reviewed_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class DecisionRecord(Base):
    __tablename__ = "decision_records"
    __table_args__ = (UniqueConstraint("application_id", "version", name="uq_decision_records_app_version"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lease_applications.id"), nullable=False, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # APPROVED|APPROVED_WITH_CONDITIONS|DENIED|WITHDRAWN_BY_STAFF
    outcome: Mapped[str] = mapped_column(String(40), nullable=False)
    decided_by: Mapped[int] = mapped_column(Integer, nullable=False)
    decided_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    criteria_version: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    reason_codes_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")

    income_verification_method: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    income_verified_monthly_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    income_verified_annual_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    income_passed: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    income_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    criminal_status: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    criminal_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    criminal_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    criminal_reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    criminal_reviewed_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    conditions_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    override_request_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("override_requests.id"), nullable=True
    )
    is_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    previous_decision_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("decision_records.id"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class ApplicationScore(Base):
    __tablename__ = "application_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lease_applications.id"), nullable=False, index=True
    )
    score_type: Mapped[str] = mapped_column(String(40), nullable=False, default="DECISION_STUB")
    score_value: Mapped[int] = mapped_column(Integer, nullable=False)
    max_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    factors_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class RiskAssessment(Base):
    __tablename__ = "risk_assessments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lease_applications.id"), nullable=False, index=True
    )
    risk_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # LOW|MEDIUM|HIGH|SEVERE
    risk_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class ApplicationNote(Base):
    __tablename__ = "application_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lease_applications.id"), nullable=False, index=True
    )
    author_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # INTERNAL_STAFF_ONLY|SHARED_WITH_APPLICANT|SHARED_WITH_PARTIES|PUBLIC
    visibility: Mapped[str] = mapped_column(String(30), nullable=False, default="INTERNAL_STAFF_ONLY")
    body: Mapped[str] = mapped_column(Text, nullable=False)
    is_pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    deleted_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


# -----------------------------
# Background jobs
# -----------------------------
class LeasingJob(Base):
    __tablename__ = "leasing_jobs"
    __table_args__ = (UniqueConstraint("job_key", name="uq_leasing_jobs_job_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_key: Mapped[str] = mapped_column(String(60), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class JobRun(Base):
    __tablename__ = "leasing_job_runs"
    __table_args__ = (UniqueConstraint("idempotency_key", name="uq_leasing_job_runs_idempotency_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)
    job_id: Mapped[int] = mapped_column(Integer, ForeignKey("leasing_jobs.id"), nullable=False, index=True)
    job_key: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    target_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="STARTED")  # STARTED|SUCCESS|FAILED
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


# -----------------------------
# Audit trail
# -----------------------------
class AuditEvent(Base):
    __tablename__ = "audit_events"
    __table_args__ = (Index("ix_audit_events_app_created", "application_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    application_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("lease_applications.id"), nullable=True
    )

    event_type: Mapped[str] = mapped_column(String(80), nullable=False)
    actor_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False, default="system")  # person|system
    target_type: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    target_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)

    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
