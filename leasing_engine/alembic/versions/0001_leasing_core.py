"""leasing core tables (tenancy, applications, reservations, payments, review, jobs, audit)

Revision ID: 0001_leasing_core
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

revision = "0001_leasing_core"
down_revision = None
branch_labels = None
depends_on = None


def _insp():
    return inspect(op.get_bind())


def _has_table(name: str) -> bool:
    return name in _insp().get_table_names()


def _has_index(table: str, name: str) -> bool:
    if not _has_table(table):
        return False
    return any(ix.get("name") == name for ix in _insp().get_indexes(table))


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("now()"))


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("now()"))


def _org_fk() -> sa.Column:
    return sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False)


def _app_fk(nullable: bool = False) -> sa.Column:
    return sa.Column("application_id", sa.Integer(), sa.ForeignKey("lease_applications.id"), nullable=nullable)


def upgrade() -> None:
    # -----------------------------
    # tenancy
    # -----------------------------
    if not _has_table("organizations"):
        op.create_table(
            "organizations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("slug", sa.String(length=80), nullable=False),
            sa.Column("name", sa.String(length=160), nullable=False),
            _created_at(),
            sa.UniqueConstraint("slug", name="uq_organizations_slug"),
        )

    if not _has_table("app_users"):
        op.create_table(
            "app_users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("display_name", sa.String(length=160), nullable=True),
            _created_at(),
            sa.UniqueConstraint("email", name="uq_app_users_email"),
        )

    if not _has_table("org_memberships"):
        op.create_table(
            "org_memberships",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default=sa.text("'owner'")),
            _created_at(),
            sa.UniqueConstraint("org_id", "user_id", name="uq_org_memberships_org_user"),
        )

    # -----------------------------
    # properties / units
    # -----------------------------
    if not _has_table("properties"):
        op.create_table(
            "properties",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            sa.Column("name", sa.String(length=160), nullable=False),
            sa.Column("site_code", sa.String(length=40), nullable=True),
            sa.Column("address", sa.String(length=255), nullable=True),
            sa.Column("city", sa.String(length=120), nullable=True),
            sa.Column("state", sa.String(length=2), nullable=True),
            sa.Column("jurisdiction_code", sa.String(length=40), nullable=True),
            _created_at(),
        )
        op.create_index("ix_properties_org_id", "properties", ["org_id"], unique=False)

    if not _has_table("units"):
        op.create_table(
            "units",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
            sa.Column("unit_code", sa.String(length=40), nullable=False),
            sa.Column("unit_type", sa.String(length=20), nullable=True),
            sa.Column("bedrooms", sa.Integer(), nullable=True),
            _created_at(),
            sa.UniqueConstraint("property_id", "unit_code", name="uq_units_property_code"),
        )

    # -----------------------------
    # configuration / policy
    # -----------------------------
    if not _has_table("workflow_configs"):
        op.create_table(
            "workflow_configs",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=True),
            sa.Column("jurisdiction_code", sa.String(length=40), nullable=True),
            sa.Column("name", sa.String(length=160), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
            sa.Column("config_json", sa.Text(), nullable=False, server_default=sa.text("'{}'")),
            sa.Column("effective_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
            sa.Column("expired_at", sa.DateTime(), nullable=True),
            _created_at(),
        )
        op.create_index(
            "ix_workflow_configs_scope",
            "workflow_configs",
            ["org_id", "property_id", "jurisdiction_code"],
            unique=False,
        )

    if not _has_table("screening_consent_templates"):
        op.create_table(
            "screening_consent_templates",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
            sa.Column("title", sa.String(length=200), nullable=True),
            sa.Column("body", sa.Text(), nullable=False, server_default=sa.text("''")),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("effective_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
            sa.Column("expired_at", sa.DateTime(), nullable=True),
            _created_at(),
        )

    if not _has_table("refund_policies"):
        op.create_table(
            "refund_policies",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            sa.Column("jurisdiction_code", sa.String(length=40), nullable=True),
            sa.Column("payment_type", sa.String(length=40), nullable=True),
            sa.Column("policy_type", sa.String(length=30), nullable=False),
            sa.Column("refund_percentage", sa.Float(), nullable=True),
            sa.Column("refund_window_hours", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
            sa.Column("effective_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
            sa.Column("expired_at", sa.DateTime(), nullable=True),
            _created_at(),
        )

    # -----------------------------
    # applications
    # -----------------------------
    if not _has_table("lease_applications"):
        op.create_table(
            "lease_applications",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
            sa.Column("unit_id", sa.Integer(), sa.ForeignKey("units.id"), nullable=True),
            sa.Column("application_type", sa.String(length=20), nullable=False, server_default=sa.text("'INDIVIDUAL'")),
            sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'DRAFT'")),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default=sa.text("'STANDARD'")),
            sa.Column("relocation_status", sa.String(length=40), nullable=True),
            sa.Column("duplicate_check_hash", sa.String(length=64), nullable=True),
            sa.Column(
                "application_fee_status", sa.String(length=20), nullable=False, server_default=sa.text("'NOT_REQUIRED'")
            ),
            sa.Column("submitted_at", sa.DateTime(), nullable=True),
            sa.Column("expires_at", sa.DateTime(), nullable=True),
            sa.Column("decisioned_at", sa.DateTime(), nullable=True),
            sa.Column("converted_at", sa.DateTime(), nullable=True),
            sa.Column("closed_at", sa.DateTime(), nullable=True),
            sa.Column("closed_reason", sa.String(length=40), nullable=True),
            sa.Column("withdrawn_at", sa.DateTime(), nullable=True),
            sa.Column("withdrawn_reason_code", sa.String(length=60), nullable=True),
            sa.Column("withdrawn_reason", sa.Text(), nullable=True),
            sa.Column("unit_availability_snapshot_json", sa.Text(), nullable=True),
            sa.Column("unit_availability_verified_at", sa.DateTime(), nullable=True),
            sa.Column("unit_was_available_at_submit", sa.Boolean(), nullable=True),
            _created_at(),
            _updated_at(),
        )
        op.create_index("ix_lease_applications_org_status", "lease_applications", ["org_id", "status"], unique=False)
        op.create_index(
            "ix_lease_applications_dupe", "lease_applications", ["org_id", "duplicate_check_hash"], unique=False
        )

    if not _has_table("application_parties"):
        op.create_table(
            "application_parties",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            _app_fk(),
            sa.Column("role", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'IN_PROGRESS'")),
            sa.Column("first_name", sa.String(length=120), nullable=True),
            sa.Column("last_name", sa.String(length=120), nullable=True),
            sa.Column("email", sa.String(length=200), nullable=True),
            sa.Column("phone", sa.String(length=40), nullable=True),
            sa.Column("invite_token", sa.String(length=80), nullable=True),
            sa.Column("invite_sent_at", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("screening_consent_at", sa.DateTime(), nullable=True),
            sa.Column(
                "screening_consent_template_id",
                sa.Integer(),
                sa.ForeignKey("screening_consent_templates.id"),
                nullable=True,
            ),
            sa.Column("screening_consent_template_version", sa.Integer(), nullable=True),
            sa.Column("screening_consent_ip", sa.String(length=64), nullable=True),
            sa.Column("screening_consent_signature", sa.Text(), nullable=True),
            sa.Column("reminder_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("last_reminder_at", sa.DateTime(), nullable=True),
            sa.Column("abandoned_at", sa.DateTime(), nullable=True),
            sa.Column("abandoned_reason_code", sa.String(length=40), nullable=True),
            _created_at(),
            _updated_at(),
            sa.UniqueConstraint("invite_token", name="uq_application_parties_invite_token"),
        )
        op.create_index("ix_application_parties_application_id", "application_parties", ["application_id"])

    if not _has_table("application_draft_sessions"):
        op.create_table(
            "application_draft_sessions",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            _app_fk(),
            sa.Column("party_id", sa.Integer(), sa.ForeignKey("application_parties.id"), nullable=True),
            sa.Column("token", sa.String(length=80), nullable=False),
            sa.Column("form_data_json", sa.Text(), nullable=False, server_default=sa.text("'{}'")),
            sa.Column("progress_map_json", sa.Text(), nullable=False, server_default=sa.text("'{}'")),
            sa.Column("current_step", sa.String(length=80), nullable=True),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("last_activity_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
            sa.Column("last_saved_at", sa.DateTime(), nullable=True),
            _created_at(),
            sa.UniqueConstraint("token", name="uq_application_draft_sessions_token"),
        )

    # -----------------------------
    # requirements / documents
    # -----------------------------
    if not _has_table("info_requests"):
        op.create_table(
            "info_requests",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            _app_fk(),
            sa.Column("target_party_id", sa.Integer(), sa.ForeignKey("application_parties.id"), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'OPEN'")),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("requested_items_json", sa.Text(), nullable=False, server_default=sa.text("'[]'")),
            sa.Column("unlock_scopes_json", sa.Text(), nullable=False, server_default=sa.text("'[]'")),
            sa.Column("requested_by", sa.Integer(), nullable=True),
            sa.Column("responded_by", sa.Integer(), nullable=True),
            sa.Column("responded_at", sa.DateTime(), nullable=True),
            sa.Column("response_message", sa.Text(), nullable=True),
            _created_at(),
            _updated_at(),
        )

    if not _has_table("requirement_items"):
        op.create_table(
            "requirement_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            _app_fk(),
            sa.Column("party_id", sa.Integer(), sa.ForeignKey("application_parties.id"), nullable=True),
            sa.Column("info_request_id", sa.Integer(), sa.ForeignKey("info_requests.id"), nullable=True),
            sa.Column("requirement_type", sa.String(length=20), nullable=False, server_default=sa.text("'CUSTOM'")),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'PENDING'")),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("due_date", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("waived_at", sa.DateTime(), nullable=True),
            sa.Column("waived_by", sa.Integer(), nullable=True),
            sa.Column("waived_reason", sa.Text(), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=False, server_default=sa.text("'{}'")),
            _created_at(),
            _updated_at(),
        )
        op.create_index("ix_requirement_items_application_id", "requirement_items", ["application_id"])

    if not _has_table("documents"):
        op.create_table(
            "documents",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            _app_fk(),
            sa.Column("party_id", sa.Integer(), sa.ForeignKey("application_parties.id"), nullable=False),
            sa.Column("requirement_item_id", sa.Integer(), sa.ForeignKey("requirement_items.id"), nullable=True),
            sa.Column("document_type", sa.String(length=60), nullable=True),
            sa.Column("file_name", sa.String(length=255), nullable=False),
            sa.Column("storage_key", sa.String(length=400), nullable=True),
            sa.Column("mime_type", sa.String(length=120), nullable=True),
            sa.Column("size_bytes", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'UPLOADED'")),
            sa.Column("verified_at", sa.DateTime(), nullable=True),
            sa.Column("verified_by", sa.Integer(), nullable=True),
            sa.Column("rejected_at", sa.DateTime(), nullable=True),
            sa.Column("rejected_by", sa.Integer(), nullable=True),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            sa.Column("expired_at", sa.DateTime(), nullable=True),
            sa.Column("valid_until", sa.DateTime(), nullable=True),
            _created_at(),
            _updated_at(),
        )
        op.create_index("ix_documents_requirement_item_id", "documents", ["requirement_item_id"])

    # -----------------------------
    # unit reservations
    # -----------------------------
    if not _has_table("unit_reservations"):
        op.create_table(
            "unit_reservations",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            sa.Column("unit_id", sa.Integer(), sa.ForeignKey("units.id"), nullable=False),
            _app_fk(),
            sa.Column("kind", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'ACTIVE'")),
            sa.Column("expires_at", sa.DateTime(), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("released_at", sa.DateTime(), nullable=True),
            sa.Column("released_by", sa.Integer(), nullable=True),
            sa.Column("release_reason_code", sa.String(length=40), nullable=True),
            sa.Column("released_reason", sa.Text(), nullable=True),
            sa.Column("converted_at", sa.DateTime(), nullable=True),
            _created_at(),
            _updated_at(),
        )
        op.create_index("ix_unit_reservations_unit_status", "unit_reservations", ["unit_id", "status"])

    if not _has_index("unit_reservations", "uq_unit_reservations_active_screening_lock"):
        # one ACTIVE screening lock per unit, enforced by the database
        op.create_index(
            "uq_unit_reservations_active_screening_lock",
            "unit_reservations",
            ["unit_id"],
            unique=True,
            postgresql_where=sa.text("status = 'ACTIVE' AND kind = 'SCREENING_LOCK'"),
            sqlite_where=sa.text("status = 'ACTIVE' AND kind = 'SCREENING_LOCK'"),
        )

    # -----------------------------
    # payments / refunds
    # -----------------------------
    if not _has_table("payment_intents"):
        op.create_table(
            "payment_intents",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            _app_fk(),
            sa.Column(
                "payment_type", sa.String(length=40), nullable=False, server_default=sa.text("'APPLICATION_FEE'")
            ),
            sa.Column("amount_cents", sa.Integer(), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default=sa.text("'USD'")),
            sa.Column("provider", sa.String(length=40), nullable=True),
            sa.Column("provider_reference", sa.String(length=200), nullable=True),
            sa.Column("client_secret", sa.String(length=200), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'REQUIRES_ACTION'")),
            sa.Column("attempts_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("paid_at", sa.DateTime(), nullable=True),
            sa.Column("failed_at", sa.DateTime(), nullable=True),
            sa.Column("failure_reason", sa.Text(), nullable=True),
            sa.Column("last_failure_code", sa.String(length=80), nullable=True),
            sa.Column("last_failure_message", sa.Text(), nullable=True),
            sa.Column("last_failure_at", sa.DateTime(), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=False, server_default=sa.text("'{}'")),
            _created_at(),
            _updated_at(),
        )
        op.create_index("ix_payment_intents_app_type", "payment_intents", ["application_id", "payment_type"])

    if not _has_table("payment_intent_attempts"):
        op.create_table(
            "payment_intent_attempts",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            sa.Column("payment_intent_id", sa.Integer(), sa.ForeignKey("payment_intents.id"), nullable=False),
            sa.Column("attempt_number", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("amount_cents", sa.Integer(), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default=sa.text("'USD'")),
            sa.Column("provider", sa.String(length=40), nullable=True),
            sa.Column("provider_reference", sa.String(length=200), nullable=True),
            sa.Column("request_payload_json", sa.Text(), nullable=True),
            sa.Column("response_payload_json", sa.Text(), nullable=True),
            sa.Column("failure_code", sa.String(length=80), nullable=True),
            sa.Column("failure_message", sa.Text(), nullable=True),
            _created_at(),
            _updated_at(),
            sa.UniqueConstraint("payment_intent_id", "attempt_number", name="uq_payment_attempts_intent_number"),
        )

    if not _has_table("refund_requests"):
        op.create_table(
            "refund_requests",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            _app_fk(),
            sa.Column("payment_intent_id", sa.Integer(), sa.ForeignKey("payment_intents.id"), nullable=False),
            sa.Column("policy_id", sa.Integer(), sa.ForeignKey("refund_policies.id"), nullable=True),
            sa.Column("policy_version", sa.Integer(), nullable=True),
            sa.Column("reason_code", sa.String(length=40), nullable=False),
            sa.Column("eligible_amount_cents", sa.Integer(), nullable=True),
            sa.Column("requested_amount_cents", sa.Integer(), nullable=True),
            sa.Column("approved_amount_cents", sa.Integer(), nullable=True),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default=sa.text("'USD'")),
            sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'PENDING'")),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("requested_by", sa.Integer(), nullable=True),
            sa.Column("reviewed_by", sa.Integer(), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("review_notes", sa.Text(), nullable=True),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
            sa.Column("provider_refund_id", sa.String(length=200), nullable=True),
            sa.Column("failed_at", sa.DateTime(), nullable=True),
            sa.Column("failure_reason", sa.Text(), nullable=True),
            _created_at(),
            _updated_at(),
        )

    # -----------------------------
    # review: overrides / decisions / scores / notes
    # -----------------------------
    if not _has_table("override_requests"):
        op.create_table(
            "override_requests",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            _app_fk(),
            sa.Column("override_type", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'PENDING'")),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("before_json", sa.Text(), nullable=True),
            sa.Column("after_json", sa.Text(), nullable=True),
            sa.Column("requested_by", sa.Integer(), nullable=True),
            sa.Column("reviewed_by", sa.Integer(), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("review_notes", sa.Text(), nullable=True),
            _created_at(),
            _updated_at(),
        )

    if not _has_table("decision_records"):
        op.create_table(
            "decision_records",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            _app_fk(),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("outcome", sa.String(length=40), nullable=False),
            sa.Column("decided_by", sa.Integer(), nullable=False),
            sa.Column("decided_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
            sa.Column("criteria_version", sa.String(length=60), nullable=True),
            sa.Column("reason_codes_json", sa.Text(), nullable=False, server_default=sa.text("'[]'")),
            sa.Column("income_verification_method", sa.String(length=60), nullable=True),
            sa.Column("income_verified_monthly_cents", sa.Integer(), nullable=True),
            sa.Column("income_verified_annual_cents", sa.Integer(), nullable=True),
            sa.Column("income_passed", sa.Boolean(), nullable=True),
            sa.Column("income_notes", sa.Text(), nullable=True),
            sa.Column("criminal_status", sa.String(length=40), nullable=True),
            sa.Column("criminal_summary", sa.Text(), nullable=True),
            sa.Column("criminal_notes", sa.Text(), nullable=True),
            sa.Column("criminal_reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("criminal_reviewed_by", sa.Integer(), nullable=True),
            sa.Column("conditions_json", sa.Text(), nullable=False, server_default=sa.text("'[]'")),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("override_request_id", sa.Integer(), sa.ForeignKey("override_requests.id"), nullable=True),
            sa.Column("is_override", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("previous_decision_id", sa.Integer(), sa.ForeignKey("decision_records.id"), nullable=True),
            _created_at(),
            sa.UniqueConstraint("application_id", "version", name="uq_decision_records_app_version"),
        )

    if not _has_table("application_scores"):
        op.create_table(
            "application_scores",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            _app_fk(),
            sa.Column("score_type", sa.String(length=40), nullable=False, server_default=sa.text("'DECISION_STUB'")),
            sa.Column("score_value", sa.Integer(), nullable=False),
            sa.Column("max_score", sa.Integer(), nullable=True),
            sa.Column("factors_json", sa.Text(), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            _created_at(),
        )

    if not _has_table("risk_assessments"):
        op.create_table(
            "risk_assessments",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            _app_fk(),
            sa.Column("risk_level", sa.String(length=20), nullable=True),
            sa.Column("risk_score", sa.Integer(), nullable=True),
            _created_at(),
        )

    if not _has_table("application_notes"):
        op.create_table(
            "application_notes",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            _app_fk(),
            sa.Column("author_id", sa.Integer(), nullable=True),
            sa.Column(
                "visibility", sa.String(length=30), nullable=False, server_default=sa.text("'INTERNAL_STAFF_ONLY'")
            ),
            sa.Column("body", sa.Text(), nullable=False),
            sa.Column("is_pinned", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
            sa.Column("deleted_by", sa.Integer(), nullable=True),
            _created_at(),
            _updated_at(),
        )

    # -----------------------------
    # background jobs
    # -----------------------------
    if not _has_table("leasing_jobs"):
        op.create_table(
            "leasing_jobs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("job_key", sa.String(length=60), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(), nullable=True),
            _created_at(),
            sa.UniqueConstraint("job_key", name="uq_leasing_jobs_job_key"),
        )

    if not _has_table("leasing_job_runs"):
        op.create_table(
            "leasing_job_runs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=True),
            sa.Column("job_id", sa.Integer(), sa.ForeignKey("leasing_jobs.id"), nullable=False),
            sa.Column("job_key", sa.String(length=60), nullable=False),
            sa.Column("target_type", sa.String(length=40), nullable=True),
            sa.Column("target_id", sa.Integer(), nullable=True),
            sa.Column("idempotency_key", sa.String(length=200), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'STARTED'")),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=False, server_default=sa.text("'{}'")),
            sa.Column("started_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
            sa.Column("finished_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("idempotency_key", name="uq_leasing_job_runs_idempotency_key"),
        )

    # -----------------------------
    # audit trail
    # -----------------------------
    if not _has_table("audit_events"):
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            _org_fk(),
            _app_fk(nullable=True),
            sa.Column("event_type", sa.String(length=80), nullable=False),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("actor_type", sa.String(length=20), nullable=False, server_default=sa.text("'system'")),
            sa.Column("target_type", sa.String(length=60), nullable=True),
            sa.Column("target_id", sa.String(length=80), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            _created_at(),
        )
        op.create_index("ix_audit_events_app_created", "audit_events", ["application_id", "created_at"])


def downgrade() -> None:
    for name in (
        "audit_events",
        "leasing_job_runs",
        "leasing_jobs",
        "application_notes",
        "risk_assessments",
        "application_scores",
        "decision_records",
        "override_requests",
        "refund_requests",
        "payment_intent_attempts",
        "payment_intents",
        "unit_reservations",
        "documents",
        "requirement_items",
        "info_requests",
        "application_draft_sessions",
        "application_parties",
        "lease_applications",
        "refund_policies",
        "screening_consent_templates",
        "workflow_configs",
        "units",
        "properties",
        "org_memberships",
        "app_users",
        "organizations",
    ):
        if _has_table(name):
            op.drop_table(name)
