"""Candidate Search Engine: find existing cases that may be the same applicant.

Two independent, parameterized branches:
  - exact: any identifier column equal to its criterion
  - name: trigram ``similarity(applicant_name, :name)`` above the threshold

Both honour the caller's ``AccessScope`` and are capped at
``search_result_limit`` rows each. Scoring happens afterwards in
``caseflow.dedup.scoring``.
"""

import logging

from sqlalchemy import Select, false, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from caseflow.access import UNRESTRICTED, AccessScope
from caseflow.config import TRACE_ENABLED
from caseflow.db.models import Case, Client
from caseflow.dedup.models import CaseSummary, MatchField, RawMatch, SearchCriteria
from caseflow.dedup.settings import MatchSettings
from caseflow.errors import SearchFailed

logger = logging.getLogger(__name__)

_CASE_COLUMNS = (
    Case.id,
    Case.case_number,
    Case.applicant_name,
    Case.status,
    Case.created_at,
    Case.pan_number,
    Case.aadhaar_number,
    Case.applicant_phone,
    Case.applicant_email,
    Case.bank_account_number,
    Case.client_id,
    Case.product_id,
    Client.name.label("client_name"),
)

# criterion -> column it is compared against
_EXACT_COLUMNS = {
    MatchField.PAN: Case.pan_number,
    MatchField.AADHAAR: Case.aadhaar_number,
    MatchField.PHONE: Case.applicant_phone,
    MatchField.BANK_ACCOUNT: Case.bank_account_number,
    MatchField.EMAIL: func.lower(Case.applicant_email),
}


def _trace(msg: str):
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


def _flag_label(f: MatchField) -> str:
    return f"m_{f.value}"


def summary_from_row(row) -> CaseSummary:
    return CaseSummary(
        id=row.id,
        case_number=row.case_number,
        applicant_name=row.applicant_name,
        status=row.status,
        created_at=row.created_at,
        pan_number=row.pan_number,
        aadhaar_number=row.aadhaar_number,
        applicant_phone=row.applicant_phone,
        applicant_email=row.applicant_email,
        bank_account_number=row.bank_account_number,
        client_id=row.client_id,
        client_name=getattr(row, "client_name", None),
        product_id=row.product_id,
    )


class CandidateSearchEngine:
    def __init__(self, settings: MatchSettings):
        self.settings = settings

    def _base(self, *extra) -> Select:
        return select(*_CASE_COLUMNS, *extra).outerjoin(Client, Client.id == Case.client_id)

    def exact_query(self, criteria: SearchCriteria, scope: AccessScope = UNRESTRICTED) -> Select | None:
        """Exact-identifier branch, or None when no identifier criterion is set."""
        present = [f for f in _EXACT_COLUMNS if criteria.get(f)]
        if not present:
            return None

        flags = []
        conditions = []
        for f in present:
            cond = _EXACT_COLUMNS[f] == criteria.get(f)
            conditions.append(cond)
            flags.append(func.coalesce(cond, false()).label(_flag_label(f)))

        stmt = self._base(*flags).where(or_(*conditions))
        stmt = scope.apply(stmt)
        return (
            stmt.order_by(Case.created_at.desc(), Case.id)
            .limit(self.settings.search_result_limit)
        )

    def name_query(self, criteria: SearchCriteria, scope: AccessScope = UNRESTRICTED) -> Select | None:
        """Fuzzy-name branch, or None when no name criterion is set."""
        name = criteria.customer_name
        if not name:
            return None
        sim = func.similarity(Case.applicant_name, name)
        stmt = (
            self._base(sim.label("name_similarity"))
            .where(sim > self.settings.name_similarity_threshold)
        )
        stmt = scope.apply(stmt)
        return (
            stmt.order_by(sim.desc(), Case.created_at.desc(), Case.id)
            .limit(self.settings.search_result_limit)
        )

    def search(
        self,
        session: Session,
        criteria: SearchCriteria,
        scope: AccessScope = UNRESTRICTED,
    ) -> list[RawMatch]:
        """Run both branches and return unscored rows (possibly the same case twice)."""
        matches: list[RawMatch] = []
        try:
            exact = self.exact_query(criteria, scope)
            if exact is not None:
                for row in session.execute(exact):
                    flags = {
                        f: bool(getattr(row, _flag_label(f)))
                        for f in _EXACT_COLUMNS if criteria.get(f)
                    }
                    matches.append(RawMatch(case=summary_from_row(row), flags=flags))

            by_name = self.name_query(criteria, scope)
            if by_name is not None:
                for row in session.execute(by_name):
                    matches.append(RawMatch(
                        case=summary_from_row(row),
                        flags={MatchField.CUSTOMER_NAME: True},
                        name_similarity=float(row.name_similarity),
                    ))
        except SQLAlchemyError as e:
            logger.exception(f"Candidate search failed: {e}")
            raise SearchFailed() from e

        _trace(f"SEARCH criteria={sorted(criteria.to_dict())} raw_rows={len(matches)}")
        return matches
