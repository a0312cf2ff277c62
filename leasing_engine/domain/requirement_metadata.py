# leasing_engine/domain/requirement_metadata.py
"""
Typed metadata carried on requirement_items.metadata_json.

The stored document keeps camelCase keys (templateId, documentType, ...). Each
requirement type gets its own variant; keys we don't know about ride along in
`extra` and are written back untouched.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

_COMMON_KEYS = {
    "source": "source",
    "templateId": "template_id",
    "documentType": "document_type",
    "partyRoles": "party_roles",
    "relocationStatuses": "relocation_statuses",
    "alternatives": "alternatives",
    "infoRequestId": "info_request_id",
}


@dataclass
class _BaseMeta:
    source: Optional[str] = None  # WORKFLOW_CONFIG | INFO_REQUEST
    template_id: Optional[str] = None
    document_type: Optional[str] = None
    party_roles: Optional[list[str]] = None
    relocation_statuses: Optional[list[str]] = None
    alternatives: Optional[list[Any]] = None
    info_request_id: Optional[int] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        for wire, attr in _COMMON_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                out[wire] = value
        return out


@dataclass
class DocumentMeta(_BaseMeta):
    kind = "DOCUMENT"


@dataclass
class ScreeningMeta(_BaseMeta):
    kind = "SCREENING"
    timeout: Optional[bool] = None
    provider: Optional[str] = None

    def to_json(self) -> dict[str, Any]:
        out = super().to_json()
        if self.timeout is not None:
            out["timeout"] = self.timeout
        if self.provider is not None:
            out["provider"] = self.provider
        return out


@dataclass
class CustomMeta(_BaseMeta):
    kind = "CUSTOM"


RequirementMetadata = Union[DocumentMeta, ScreeningMeta, CustomMeta]


def _variant_for(requirement_type: Optional[str]) -> type:
    if requirement_type == "DOCUMENT":
        return DocumentMeta
    if requirement_type == "SCREENING":
        return ScreeningMeta
    return CustomMeta


def parse_requirement_metadata(requirement_type: Optional[str], raw: Any) -> RequirementMetadata:
    cls = _variant_for(requirement_type)
    data = dict(raw) if isinstance(raw, dict) else {}

    kwargs: dict[str, Any] = {}
    for wire, attr in _COMMON_KEYS.items():
        if wire in data:
            kwargs[attr] = data.pop(wire)

    if cls is ScreeningMeta:
        if "timeout" in data:
            kwargs["timeout"] = data.pop("timeout")
        if "provider" in data:
            kwargs["provider"] = data.pop("provider")

    return cls(extra=data, **kwargs)


def build_requirement_metadata(
    requirement_type: str,
    *,
    source: str,
    base: Any = None,
    template_id: Any = None,
    document_type: Optional[str] = None,
    party_roles: Optional[list[str]] = None,
    relocation_statuses: Optional[list[str]] = None,
    alternatives: Optional[list[Any]] = None,
) -> RequirementMetadata:
    """Template/info-request metadata merged over any free-form `metadata` block."""
    meta = parse_requirement_metadata(requirement_type, base)
    meta.source = source
    if template_id:
        meta.template_id = str(template_id)
    if document_type:
        meta.document_type = document_type
    if party_roles:
        meta.party_roles = list(party_roles)
    if relocation_statuses:
        meta.relocation_statuses = list(relocation_statuses)
    if alternatives:
        meta.alternatives = list(alternatives)
    return meta


def resolve_alternatives(alternatives: Any, relocation_status: Optional[str]) -> Optional[list[Any]]:
    """
    `alternatives` may be a flat list (used as-is) or a dict keyed by relocation
    status with a "default" fallback.
    """
    if not alternatives:
        return None
    if isinstance(alternatives, list):
        return alternatives
    if isinstance(alternatives, dict):
        if relocation_status and isinstance(alternatives.get(relocation_status), list):
            return alternatives[relocation_status]
        if isinstance(alternatives.get("default"), list):
            return alternatives["default"]
    return None
