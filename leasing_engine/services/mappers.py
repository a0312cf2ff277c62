# leasing_engine/services/mappers.py
"""
Row -> plain dict conversion for service results.

Service results are JSON-friendly dicts (datetimes are left as datetime; the
API layer encodes them). JSON text columns are decoded here.
"""
from __future__ import annotations

from typing import Any, Optional

from ..domain.json_fields import loads_json
from ..domain.requirement_metadata import parse_requirement_metadata
from ..models import (
    ApplicationNote,
    ApplicationParty,
    ApplicationScore,
    DecisionRecord,
    Document,
    DraftSession,
    InfoRequest,
    JobRun,
    LeaseApplication,
    OverrideRequest,
    PaymentAttempt,
    PaymentIntent,
    RefundRequest,
    RequirementItem,
    UnitReservation,
)


def application_to_dict(a: LeaseApplication) -> dict[str, Any]:
    return {
        "id": a.id,
        "org_id": a.org_id,
        "property_id": a.property_id,
        "unit_id": a.unit_id,
        "application_type": a.application_type,
        "status": a.status,
        "priority": a.priority,
        "relocation_status": a.relocation_status,
        "duplicate_check_hash": a.duplicate_check_hash,
        "application_fee_status": a.application_fee_status,
        "submitted_at": a.submitted_at,
        "expires_at": a.expires_at,
        "decisioned_at": a.decisioned_at,
        "converted_at": a.converted_at,
        "closed_at": a.closed_at,
        "closed_reason": a.closed_reason,
        "withdrawn_at": a.withdrawn_at,
        "withdrawn_reason_code": a.withdrawn_reason_code,
        "withdrawn_reason": a.withdrawn_reason,
        "unit_availability_snapshot": loads_json(a.unit_availability_snapshot_json, None),
        "unit_availability_verified_at": a.unit_availability_verified_at,
        "unit_was_available_at_submit": a.unit_was_available_at_submit,
        "created_at": a.created_at,
        "updated_at": a.updated_at,
    }


def party_to_dict(p: Optional[ApplicationParty]) -> Optional[dict[str, Any]]:
    if p is None:
        return None
    return {
        "id": p.id,
        "application_id": p.application_id,
        "role": p.role,
        "status": p.status,
        "email": p.email,
        "first_name": p.first_name,
        "last_name": p.last_name,
        "phone": p.phone,
        "invite_token": p.invite_token,
        "invite_sent_at": p.invite_sent_at,
        "completed_at": p.completed_at,
        "screening_consent_at": p.screening_consent_at,
        "screening_consent_template_id": p.screening_consent_template_id,
        "screening_consent_template_version": p.screening_consent_template_version,
        "reminder_count": p.reminder_count,
        "last_reminder_at": p.last_reminder_at,
        "abandoned_at": p.abandoned_at,
        "abandoned_reason_code": p.abandoned_reason_code,
        "created_at": p.created_at,
        "updated_at": p.updated_at,
    }


def session_to_dict(s: Optional[DraftSession]) -> Optional[dict[str, Any]]:
    if s is None:
        return None
    return {
        "id": s.id,
        "application_id": s.application_id,
        "party_id": s.party_id,
        "session_token": s.token,
        "form_data": loads_json(s.form_data_json, {}),
        "progress_map": loads_json(s.progress_map_json, {}),
        "current_step": s.current_step,
        "expires_at": s.expires_at,
        "last_activity_at": s.last_activity_at,
        "last_saved_at": s.last_saved_at,
        "created_at": s.created_at,
    }


def reservation_to_dict(r: Optional[UnitReservation]) -> Optional[dict[str, Any]]:
    if r is None:
        return None
    return {
        "id": r.id,
        "org_id": r.org_id,
        "application_id": r.application_id,
        "unit_id": r.unit_id,
        "kind": r.kind,
        "status": r.status,
        "expires_at": r.expires_at,
        "released_at": r.released_at,
        "release_reason_code": r.release_reason_code,
        "released_reason": r.released_reason,
        "converted_at": r.converted_at,
        "created_at": r.created_at,
        "updated_at": r.updated_at,
    }


def requirement_to_dict(r: RequirementItem) -> dict[str, Any]:
    meta = parse_requirement_metadata(r.requirement_type, loads_json(r.metadata_json, {}))
    return {
        "id": r.id,
        "application_id": r.application_id,
        "party_id": r.party_id,
        "info_request_id": r.info_request_id,
        "requirement_type": r.requirement_type,
        "status": r.status,
        "name": r.name,
        "description": r.description,
        "is_required": r.is_required,
        "sort_order": r.sort_order,
        "due_date": r.due_date,
        "completed_at": r.completed_at,
        "waived_at": r.waived_at,
        "waived_reason": r.waived_reason,
        "metadata": meta.to_json(),
        "created_at": r.created_at,
        "updated_at": r.updated_at,
    }


def document_to_dict(d: Document) -> dict[str, Any]:
    return {
        "id": d.id,
        "application_id": d.application_id,
        "party_id": d.party_id,
        "requirement_item_id": d.requirement_item_id,
        "document_type": d.document_type,
        "file_name": d.file_name,
        "storage_key": d.storage_key,
        "mime_type": d.mime_type,
        "size_bytes": d.size_bytes,
        "status": d.status,
        "verified_at": d.verified_at,
        "verified_by": d.verified_by,
        "rejected_at": d.rejected_at,
        "rejected_by": d.rejected_by,
        "rejection_reason": d.rejection_reason,
        "expired_at": d.expired_at,
        "valid_until": d.valid_until,
        "created_at": d.created_at,
    }


def info_request_to_dict(ir: InfoRequest) -> dict[str, Any]:
    return {
        "id": ir.id,
        "application_id": ir.application_id,
        "target_party_id": ir.target_party_id,
        "status": ir.status,
        "message": ir.message,
        "requested_items": loads_json(ir.requested_items_json, []),
        "unlock_scopes": loads_json(ir.unlock_scopes_json, []),
        "requested_by": ir.requested_by,
        "responded_by": ir.responded_by,
        "responded_at": ir.responded_at,
        "response_message": ir.response_message,
        "created_at": ir.created_at,
    }


def intent_to_dict(pi: Optional[PaymentIntent]) -> Optional[dict[str, Any]]:
    if pi is None:
        return None
    return {
        "id": pi.id,
        "application_id": pi.application_id,
        "payment_type": pi.payment_type,
        "amount_cents": pi.amount_cents,
        "currency": pi.currency,
        "provider": pi.provider,
        "provider_reference": pi.provider_reference,
        "client_secret": pi.client_secret,
        "status": pi.status,
        "attempts_count": pi.attempts_count,
        "paid_at": pi.paid_at,
        "failed_at": pi.failed_at,
        "failure_reason": pi.failure_reason,
        "last_failure_code": pi.last_failure_code,
        "last_failure_message": pi.last_failure_message,
        "last_failure_at": pi.last_failure_at,
        "metadata": loads_json(pi.metadata_json, {}),
        "created_at": pi.created_at,
        "updated_at": pi.updated_at,
    }


def attempt_to_dict(a: Optional[PaymentAttempt]) -> Optional[dict[str, Any]]:
    if a is None:
        return None
    return {
        "id": a.id,
        "payment_intent_id": a.payment_intent_id,
        "attempt_number": a.attempt_number,
        "status": a.status,
        "amount_cents": a.amount_cents,
        "currency": a.currency,
        "provider": a.provider,
        "provider_reference": a.provider_reference,
        "request_payload": loads_json(a.request_payload_json, None),
        "response_payload": loads_json(a.response_payload_json, None),
        "failure_code": a.failure_code,
        "failure_message": a.failure_message,
        "created_at": a.created_at,
        "updated_at": a.updated_at,
    }


def refund_request_to_dict(r: RefundRequest) -> dict[str, Any]:
    return {
        "id": r.id,
        "application_id": r.application_id,
        "payment_intent_id": r.payment_intent_id,
        "status": r.status,
        "policy_id": r.policy_id,
        "policy_version": r.policy_version,
        "reason_code": r.reason_code,
        "eligible_amount_cents": r.eligible_amount_cents,
        "requested_amount_cents": r.requested_amount_cents,
        "approved_amount_cents": r.approved_amount_cents,
        "currency": r.currency,
        "reason": r.reason,
        "requested_by": r.requested_by,
        "reviewed_by": r.reviewed_by,
        "reviewed_at": r.reviewed_at,
        "review_notes": r.review_notes,
        "processed_at": r.processed_at,
        "provider_refund_id": r.provider_refund_id,
        "failed_at": r.failed_at,
        "failure_reason": r.failure_reason,
        "created_at": r.created_at,
    }


def decision_to_dict(d: DecisionRecord) -> dict[str, Any]:
    return {
        "id": d.id,
        "application_id": d.application_id,
        "version": d.version,
        "outcome": d.outcome,
        "decided_by": d.decided_by,
        "decided_at": d.decided_at,
        "criteria_version": d.criteria_version,
        "reason_codes": loads_json(d.reason_codes_json, []),
        "income": {
            "method": d.income_verification_method,
            "verified_monthly_cents": d.income_verified_monthly_cents,
            "verified_annual_cents": d.income_verified_annual_cents,
            "passed": d.income_passed,
            "notes": d.income_notes,
        },
        "criminal": {
            "status": d.criminal_status,
            "summary": loads_json(d.criminal_summary, d.criminal_summary),
            "notes": d.criminal_notes,
            "reviewed_at": d.criminal_reviewed_at,
            "reviewed_by": d.criminal_reviewed_by,
        },
        "conditions": loads_json(d.conditions_json, []),
        "notes": d.notes,
        "override_request_id": d.override_request_id,
        "is_override": d.is_override,
        "previous_decision_id": d.previous_decision_id,
        "created_at": d.created_at,
    }


def score_to_dict(s: ApplicationScore) -> dict[str, Any]:
    return {
        "id": s.id,
        "application_id": s.application_id,
        "score_type": s.score_type,
        "score_value": s.score_value,
        "max_score": s.max_score,
        "factors": loads_json(s.factors_json, None),
        "created_by": s.created_by,
        "created_at": s.created_at,
    }


def override_to_dict(o: OverrideRequest) -> dict[str, Any]:
    return {
        "id": o.id,
        "application_id": o.application_id,
        "override_type": o.override_type,
        "status": o.status,
        "reason": o.reason,
        "before": loads_json(o.before_json, None),
        "after": loads_json(o.after_json, None),
        "requested_by": o.requested_by,
        "reviewed_by": o.reviewed_by,
        "reviewed_at": o.reviewed_at,
        "review_notes": o.review_notes,
        "created_at": o.created_at,
    }


def note_to_dict(n: ApplicationNote) -> dict[str, Any]:
    return {
        "id": n.id,
        "application_id": n.application_id,
        "author_id": n.author_id,
        "visibility": n.visibility,
        "body": n.body,
        "is_pinned": n.is_pinned,
        "created_at": n.created_at,
        "updated_at": n.updated_at,
        "deleted_at": n.deleted_at,
    }


def job_run_to_dict(r: JobRun) -> dict[str, Any]:
    return {
        "id": r.id,
        "job_key": r.job_key,
        "target_type": r.target_type,
        "target_id": r.target_id,
        "idempotency_key": r.idempotency_key,
        "status": r.status,
        "error": r.error,
        "metadata": loads_json(r.metadata_json, {}),
        "started_at": r.started_at,
        "finished_at": r.finished_at,
    }
