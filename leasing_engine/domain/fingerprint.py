from __future__ import annotations

import hashlib
import re
import secrets
from typing import Any, Optional


def normalize_email(value: Any) -> str:
    return str(value or "").strip().lower()


def normalize_phone(value: Any) -> Optional[str]:
    digits = re.sub(r"[^\d]", "", str(value or ""))
    return digits or None


def duplicate_check_hash(email: Any, unit_id: Any, property_id: Any) -> str:
    """
    Stable fingerprint for draft dedupe: same applicant email on the same
    unit/property hashes identically regardless of email casing.
    """
    raw = f"{normalize_email(email)}|{'' if unit_id is None else unit_id}|{'' if property_id is None else property_id}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def issue_token() -> str:
    """64 hex chars; used for draft sessions and party invites."""
    return secrets.token_hex(32)
