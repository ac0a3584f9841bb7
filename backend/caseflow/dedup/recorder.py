"""Decision Recorder: validate an operator decision and append it to the audit trail.

The caller echoes back the criteria and candidates it was shown. Their
shape is re-checked but their content is stored as-is, so the audit row
reflects what the operator actually saw rather than the current store.
"""

import logging
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from caseflow.access import AccessGatekeeper, Principal
from caseflow.db.models import DeduplicationAudit, User
from caseflow.dedup.models import (
    AuditEntry,
    Decision,
    DeduplicationDecision,
    SearchCriteria,
    ShownCandidate,
)
from caseflow.dedup.settings import MatchSettings
from caseflow.errors import (
    AuthenticationRequired,
    InvalidDecisionData,
    InvalidDecisionType,
    InvalidSearchToken,
)
from caseflow.security import verify_search_token

logger = logging.getLogger(__name__)

_REQUIRED_DECISION_FIELDS = ("caseId", "decision", "rationale")


def _blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def parse_decision(raw: Any) -> DeduplicationDecision:
    """Presence is checked before the decision type, matching the error codes callers rely on."""
    if not isinstance(raw, Mapping):
        raise InvalidDecisionData()
    missing = [k for k in _REQUIRED_DECISION_FIELDS if _blank(raw.get(k))]
    if missing:
        raise InvalidDecisionData(f"Missing required decision fields: {', '.join(missing)}")

    try:
        decision = Decision(raw["decision"].strip())
    except ValueError:
        raise InvalidDecisionType(
            f"Invalid decision type. Must be one of: {', '.join(d.value for d in Decision)}"
        ) from None

    selected = raw.get("selectedExistingCaseId")
    if selected is not None and _blank(selected):
        selected = None
    if selected is not None and not isinstance(selected, str):
        raise InvalidDecisionData("selectedExistingCaseId must be a string")

    return DeduplicationDecision(
        case_id=raw["caseId"].strip(),
        decision=decision,
        rationale=raw["rationale"].strip(),
        selected_existing_case_id=selected.strip() if selected else None,
    )


def parse_search_criteria(raw: Any, case_id: str) -> SearchCriteria:
    if raw is None:
        logger.warning(f"Decision for case {case_id} recorded without searchCriteria")
        return SearchCriteria()
    if not isinstance(raw, Mapping):
        raise InvalidDecisionData("searchCriteria must be an object")
    return SearchCriteria.from_dict(raw)


def parse_shown_candidates(raw: Any, case_id: str) -> list[ShownCandidate]:
    if raw is None:
        logger.warning(f"Decision for case {case_id} recorded without duplicatesFound")
        return []
    if not isinstance(raw, list):
        raise InvalidDecisionData("duplicatesFound must be a list")
    return [ShownCandidate.from_dict(item) for item in raw]


def _entry_from_row(audit: DeduplicationAudit, performer_name: str | None) -> AuditEntry:
    return AuditEntry(
        id=audit.id,
        case_id=audit.case_id,
        search_criteria=audit.search_criteria,
        duplicates_found=audit.duplicates_found,
        user_decision=audit.user_decision,
        rationale=audit.rationale,
        performed_by=audit.performed_by,
        performed_at=audit.performed_at,
        updated_at=audit.updated_at,
        selected_existing_case_id=audit.selected_existing_case_id,
        performed_by_name=performer_name,
    )


class DecisionRecorder:
    def __init__(self, settings: MatchSettings, gatekeeper: AccessGatekeeper):
        self.settings = settings
        self.gatekeeper = gatekeeper

    def record(
        self,
        session: Session,
        principal: Principal | None,
        decision_raw: Any,
        search_criteria_raw: Any = None,
        duplicates_found_raw: Any = None,
        search_token: str | None = None,
    ) -> AuditEntry:
        """Validate and insert one audit row using ``session``'s open transaction.

        The caller owns the transaction; nothing is flushed until every check
        has passed, so a rejected decision leaves no row behind.
        """
        decision = parse_decision(decision_raw)

        if principal is None or not principal.id:
            raise AuthenticationRequired()

        criteria = parse_search_criteria(search_criteria_raw, decision.case_id)
        shown = parse_shown_candidates(duplicates_found_raw, decision.case_id)

        # unknown case ids fall through to the foreign key
        self.gatekeeper.check_case(session, principal, decision.case_id, missing_ok=True)

        if search_token:
            verify_search_token(
                search_token, criteria, [c.case_id for c in shown], self.settings.auth_secret
            )
        elif self.settings.require_search_token:
            logger.warning(f"Decision for case {decision.case_id} rejected: no search token")
            raise InvalidSearchToken()

        audit = DeduplicationAudit(
            case_id=decision.case_id,
            search_criteria=criteria.to_dict(),
            duplicates_found=[c.snapshot for c in shown],
            user_decision=decision.decision.value,
            rationale=decision.rationale,
            selected_existing_case_id=decision.selected_existing_case_id,
            performed_by=principal.id,
        )
        session.add(audit)
        session.flush()

        logger.info(
            f"Deduplication decision recorded: case={decision.case_id} "
            f"decision={decision.decision.value} by={principal.id} "
            f"candidates_shown={len(shown)}"
        )
        return _entry_from_row(audit, principal.name)

    def history(self, session: Session, case_id: str) -> list[AuditEntry]:
        """All audit rows for a case, newest first."""
        rows = session.execute(
            select(DeduplicationAudit, User.name)
            .outerjoin(User, User.id == DeduplicationAudit.performed_by)
            .where(DeduplicationAudit.case_id == case_id)
            .order_by(DeduplicationAudit.performed_at.desc(), DeduplicationAudit.id.desc())
        ).all()
        return [_entry_from_row(audit, name) for audit, name in rows]
