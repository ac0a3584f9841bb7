"""Typed value objects for the deduplication flow.

In-memory logic works with these dataclasses; JSON (camelCase, as exposed
over HTTP and stored in the audit snapshots) is produced only at the edges
through ``to_dict()`` / ``from_dict()``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Mapping

from caseflow.config import CONFIDENCE_BANDS
from caseflow.errors import InvalidDecisionData


class MatchField(StrEnum):
    """Criteria fields a candidate can match on (named as in the request)."""
    CUSTOMER_NAME = "customerName"
    PAN = "panNumber"
    AADHAAR = "aadhaarNumber"
    PHONE = "customerPhone"
    BANK_ACCOUNT = "bankAccountNumber"
    EMAIL = "customerEmail"


def confidence_band(score: float) -> str:
    for threshold, label in CONFIDENCE_BANDS:
        if score >= threshold:
            return label
    return "VERY LOW"


EXACT_FIELDS = (
    MatchField.PAN,
    MatchField.AADHAAR,
    MatchField.PHONE,
    MatchField.BANK_ACCOUNT,
    MatchField.EMAIL,
)


class Decision(StrEnum):
    CREATE_NEW = "CREATE_NEW"
    USE_EXISTING = "USE_EXISTING"
    MERGE_CASES = "MERGE_CASES"


# ═══════════════════════════════════════════════════
# SEARCH CRITERIA
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class SearchCriteria:
    customer_name: str | None = None
    pan_number: str | None = None
    customer_phone: str | None = None
    aadhaar_number: str | None = None
    bank_account_number: str | None = None
    customer_email: str | None = None

    _KEYS = {
        MatchField.CUSTOMER_NAME: "customer_name",
        MatchField.PAN: "pan_number",
        MatchField.PHONE: "customer_phone",
        MatchField.AADHAAR: "aadhaar_number",
        MatchField.BANK_ACCOUNT: "bank_account_number",
        MatchField.EMAIL: "customer_email",
    }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any] | None) -> "SearchCriteria":
        """Build from the camelCase request shape; non-string values count as absent."""
        raw = raw or {}
        values = {}
        for key, attr in cls._KEYS.items():
            value = raw.get(key.value)
            values[attr] = value if isinstance(value, str) else None
        return cls(**values)

    def get(self, field_name: MatchField) -> str | None:
        return getattr(self, self._KEYS[field_name])

    def present_fields(self) -> list[MatchField]:
        return [f for f in self._KEYS if self.get(f)]

    def is_empty(self) -> bool:
        return not self.present_fields()

    def to_dict(self) -> dict[str, str]:
        return {f.value: self.get(f) for f in self.present_fields()}


# ═══════════════════════════════════════════════════
# CASES & CANDIDATES
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class CaseSummary:
    """Identifying slice of a case row (the full case schema lives elsewhere)."""
    id: str
    case_number: str
    applicant_name: str
    status: str
    created_at: datetime
    pan_number: str | None = None
    aadhaar_number: str | None = None
    applicant_phone: str | None = None
    applicant_email: str | None = None
    bank_account_number: str | None = None
    client_id: int | None = None
    client_name: str | None = None
    product_id: int | None = None

    def identifier_dict(self) -> dict:
        return {
            "id": self.id,
            "caseNumber": self.case_number,
            "applicantName": self.applicant_name,
            "status": self.status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "panNumber": self.pan_number,
            "aadhaarNumber": self.aadhaar_number,
            "applicantPhone": self.applicant_phone,
            "bankAccountNumber": self.bank_account_number,
        }

    def to_dict(self) -> dict:
        d = self.identifier_dict()
        d.update({
            "applicantEmail": self.applicant_email,
            "clientId": self.client_id,
            "clientName": self.client_name,
            "productId": self.product_id,
        })
        return d


@dataclass
class RawMatch:
    """One row returned by a search branch, before scoring."""
    case: CaseSummary
    flags: dict[MatchField, bool] = field(default_factory=dict)
    name_similarity: float | None = None

    def matched_exact(self) -> list[MatchField]:
        return [f for f in EXACT_FIELDS if self.flags.get(f)]


@dataclass(frozen=True)
class DuplicateCandidate:
    case: CaseSummary
    matched_fields: frozenset[MatchField]
    match_score: float
    name_similarity: float | None = None

    @property
    def confidence(self) -> float:
        return min(1.0, self.match_score)

    def to_dict(self) -> dict:
        return {
            "case": self.case.to_dict(),
            "matchedFields": sorted(f.value for f in self.matched_fields),
            "matchScore": round(self.match_score, 4),
            "confidence": round(self.confidence, 4),
            "confidenceBand": confidence_band(self.confidence),
            "nameSimilarity": (
                round(self.name_similarity, 4) if self.name_similarity is not None else None
            ),
        }


@dataclass(frozen=True)
class ShownCandidate:
    """A candidate echoed back by the caller with its decision.

    Only the shape is checked; the content is kept as the operator saw it.
    """
    case_id: str
    snapshot: dict

    @classmethod
    def from_dict(cls, raw: Any) -> "ShownCandidate":
        if not isinstance(raw, Mapping):
            raise InvalidDecisionData("Each entry in duplicatesFound must be an object")
        case = raw.get("case")
        if not isinstance(case, Mapping):
            raise InvalidDecisionData("Each entry in duplicatesFound must carry a case object")
        case_id = case.get("id")
        if not isinstance(case_id, str) or not case_id.strip():
            raise InvalidDecisionData("Each entry in duplicatesFound must carry a case id")
        matched = raw.get("matchedFields", [])
        if not isinstance(matched, list) or not all(isinstance(m, str) for m in matched):
            raise InvalidDecisionData("matchedFields must be a list of field names")
        score = raw.get("matchScore", 0)
        if isinstance(score, bool) or not isinstance(score, (int, float)) or not math.isfinite(score):
            raise InvalidDecisionData("matchScore must be a number")
        return cls(case_id=case_id.strip(), snapshot=dict(raw))


# ═══════════════════════════════════════════════════
# DECISIONS & AUDIT
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class DeduplicationDecision:
    case_id: str
    decision: Decision
    rationale: str
    selected_existing_case_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "caseId": self.case_id,
            "decision": self.decision.value,
            "rationale": self.rationale,
            "selectedExistingCaseId": self.selected_existing_case_id,
        }


@dataclass(frozen=True)
class AuditEntry:
    id: int
    case_id: str
    search_criteria: dict
    duplicates_found: list
    user_decision: str
    rationale: str
    performed_by: str
    performed_at: datetime
    updated_at: datetime | None = None
    selected_existing_case_id: str | None = None
    performed_by_name: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "caseId": self.case_id,
            "searchCriteria": self.search_criteria,
            "duplicatesFound": self.duplicates_found,
            "userDecision": self.user_decision,
            "rationale": self.rationale,
            "selectedExistingCaseId": self.selected_existing_case_id,
            "performedBy": self.performed_by,
            "performedByName": self.performed_by_name,
            "performedAt": self.performed_at.isoformat() if self.performed_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


# ═══════════════════════════════════════════════════
# CLUSTERS
# ═══════════════════════════════════════════════════

@dataclass
class DuplicateCluster:
    group_key: str
    cases: list[CaseSummary]
    shared_identifiers: list[tuple[str, str]] = field(default_factory=list)

    @property
    def case_count(self) -> int:
        return len(self.cases)

    def to_dict(self) -> dict:
        return {
            "groupKey": self.group_key,
            "caseCount": self.case_count,
            "sharedIdentifiers": [
                {"field": f, "value": v} for f, v in self.shared_identifiers
            ],
            "cases": [c.identifier_dict() for c in self.cases],
        }


@dataclass
class ClusterPage:
    clusters: list[DuplicateCluster]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self) -> dict:
        return {
            "clusters": [c.to_dict() for c in self.clusters],
            "pagination": {
                "page": self.page,
                "limit": self.limit,
                "total": self.total,
                "totalPages": self.total_pages,
            },
        }
