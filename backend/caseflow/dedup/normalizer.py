"""Criteria Normalizer: clean caller-supplied search criteria.

Only a malformed PAN is a hard failure; every other malformed field is
dropped silently so a request with one good identifier still succeeds.
"""

import re
import logging
from typing import Any, Mapping

from caseflow.dedup.models import SearchCriteria
from caseflow.dedup.text import collapse_whitespace, digits_only
from caseflow.errors import EmptyCriteria, InvalidPanFormat

logger = logging.getLogger(__name__)

PAN_RE = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]{1}$")
MIN_PHONE_DIGITS = 10
AADHAAR_DIGITS = 12
_ACCOUNT_SEPARATORS_RE = re.compile(r"[\s\-]+")


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def normalize_pan(raw: Any) -> str | None:
    """Upper-case and validate a PAN; raises ``InvalidPanFormat`` if malformed."""
    pan = _clean(raw)
    if pan is None:
        return None
    pan = pan.upper()
    if not PAN_RE.match(pan):
        raise InvalidPanFormat()
    return pan


def normalize_phone(raw: Any) -> str | None:
    phone = _clean(raw)
    if phone is None:
        return None
    phone = digits_only(phone)
    return phone if len(phone) >= MIN_PHONE_DIGITS else None


def normalize_aadhaar(raw: Any) -> str | None:
    aadhaar = _clean(raw)
    if aadhaar is None:
        return None
    compact = _ACCOUNT_SEPARATORS_RE.sub("", aadhaar)
    if len(compact) != AADHAAR_DIGITS or not compact.isdigit():
        return None
    return compact


def normalize_bank_account(raw: Any) -> str | None:
    account = _clean(raw)
    if account is None:
        return None
    return _ACCOUNT_SEPARATORS_RE.sub("", account).upper() or None


def normalize_email(raw: Any) -> str | None:
    email = _clean(raw)
    if email is None or "@" not in email:
        return None
    return email.lower()


def normalize_name(raw: Any) -> str | None:
    name = _clean(raw)
    return collapse_whitespace(name) if name else None


def normalize_criteria(raw: Mapping[str, Any] | SearchCriteria | None) -> SearchCriteria:
    """Clean raw criteria into a ``SearchCriteria`` ready for the search engine.

    Raises:
        InvalidPanFormat: PAN present but not 5 letters + 4 digits + 1 letter.
        EmptyCriteria: nothing usable is left after cleaning.
    """
    if isinstance(raw, SearchCriteria):
        raw = raw.to_dict()
    raw = raw or {}

    criteria = SearchCriteria(
        customer_name=normalize_name(raw.get("customerName")),
        pan_number=normalize_pan(raw.get("panNumber")),
        customer_phone=normalize_phone(raw.get("customerPhone")),
        aadhaar_number=normalize_aadhaar(raw.get("aadhaarNumber")),
        bank_account_number=normalize_bank_account(raw.get("bankAccountNumber")),
        customer_email=normalize_email(raw.get("customerEmail")),
    )
    if criteria.is_empty():
        raise EmptyCriteria()

    dropped = [
        k for k, v in raw.items()
        if _clean(v) is not None and k not in criteria.to_dict()
    ]
    if dropped:
        logger.debug(f"Criteria normalization dropped malformed field(s): {', '.join(dropped)}")
    return criteria
