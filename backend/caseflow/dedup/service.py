"""DeduplicationService: the intake-time duplicate check and its audit trail.

Flow:
  criteria -> normalize -> search (exact + name) -> rank -> candidates
  operator decision -> validate -> audit row
  admin / job -> cluster scan

The service is stateless: it holds a session factory and settings, and every
call opens (and closes) its own session.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from caseflow.access import AccessGatekeeper, Principal
from caseflow.dedup.clusters import ClusterMiner
from caseflow.dedup.models import AuditEntry, ClusterPage, DuplicateCandidate, SearchCriteria
from caseflow.dedup.normalizer import normalize_criteria
from caseflow.dedup.recorder import DecisionRecorder
from caseflow.dedup.scoring import rank_candidates
from caseflow.dedup.search import CandidateSearchEngine
from caseflow.dedup.settings import MatchSettings
from caseflow.errors import (
    ClustersFailed,
    DecisionFailed,
    DeduplicationError,
    HistoryFailed,
    MissingCaseId,
    RequestTimeout,
    SearchFailed,
)
from caseflow.security import issue_search_token

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    criteria: SearchCriteria
    candidates: list[DuplicateCandidate]
    search_token: str

    def to_dict(self) -> dict:
        return {
            "candidates": [c.to_dict() for c in self.candidates],
            "searchCriteria": self.criteria.to_dict(),
            "totalFound": len(self.candidates),
            "searchToken": self.search_token,
        }


class CommitWindow:
    """Settles, exactly once, whether a write commits or its caller gave up first.

    The worker thread calls ``claim_commit()`` just before committing; the
    waiting request calls ``expire()`` when its timeout fires. Whichever
    arrives first wins, so a 504 is never reported for a committed row.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._outcome: str | None = None

    def _settle(self, outcome: str) -> bool:
        with self._lock:
            if self._outcome is None:
                self._outcome = outcome
            return self._outcome == outcome

    def claim_commit(self) -> bool:
        return self._settle("commit")

    def expire(self) -> bool:
        return self._settle("expired")


class DeduplicationService:
    def __init__(self, session_factory: sessionmaker, settings: MatchSettings | None = None):
        self.session_factory = session_factory
        self.settings = settings or MatchSettings.from_env()
        self.gatekeeper = AccessGatekeeper()
        self.engine = CandidateSearchEngine(self.settings)
        self.recorder = DecisionRecorder(self.settings, self.gatekeeper)
        self.miner = ClusterMiner(self.settings)

    def search(self, principal: Principal | None, raw_criteria: Any) -> SearchResult:
        """Find existing cases that may belong to the same applicant."""
        criteria = normalize_criteria(raw_criteria)
        try:
            with self.session_factory() as session:
                scope = self.gatekeeper.resolve_scope(session, principal)
                raw = self.engine.search(session, criteria, scope)
        except DeduplicationError:
            raise
        except SQLAlchemyError as e:
            logger.exception(f"Duplicate search failed while resolving access scope: {e}")
            raise SearchFailed() from e
        candidates = rank_candidates(raw, self.settings)

        token = issue_search_token(
            criteria,
            [c.case.id for c in candidates],
            self.settings.auth_secret,
            self.settings.search_token_ttl_seconds,
        )
        logger.info(
            f"Duplicate search by {principal.id}: fields={sorted(criteria.to_dict())} "
            f"candidates={len(candidates)}"
        )
        return SearchResult(criteria=criteria, candidates=candidates, search_token=token)

    def record_decision(
        self,
        principal: Principal | None,
        decision: Any,
        search_criteria: Any = None,
        duplicates_found: Any = None,
        search_token: str | None = None,
        commit_window: CommitWindow | None = None,
    ) -> AuditEntry:
        """Validate and persist one decision; the row is written in its own transaction.

        With ``commit_window``, the transaction rolls back with ``RequestTimeout``
        if the caller expired the window before the commit was claimed.
        """
        try:
            with self.session_factory.begin() as session:
                entry = self.recorder.record(
                    session,
                    principal,
                    decision,
                    search_criteria,
                    duplicates_found,
                    search_token,
                )
                if commit_window is not None and not commit_window.claim_commit():
                    logger.warning(
                        f"Decision for case {entry.case_id} rolled back: request already timed out"
                    )
                    raise RequestTimeout()
                return entry
        except DeduplicationError:
            raise
        except SQLAlchemyError as e:
            logger.exception(f"Failed to record deduplication decision: {e}")
            raise DecisionFailed() from e

    def history(self, principal: Principal | None, case_id: str | None) -> list[AuditEntry]:
        if not case_id or not case_id.strip():
            raise MissingCaseId()
        case_id = case_id.strip()
        try:
            with self.session_factory() as session:
                self.gatekeeper.check_case(session, principal, case_id)
                return self.recorder.history(session, case_id)
        except DeduplicationError:
            raise
        except SQLAlchemyError as e:
            logger.exception(f"Failed to fetch deduplication history for case {case_id}: {e}")
            raise HistoryFailed() from e

    def clusters(
        self,
        principal: Principal | None,
        page: int = 1,
        limit: int | None = None,
        cancel: threading.Event | None = None,
    ) -> ClusterPage:
        try:
            with self.session_factory() as session:
                scope = self.gatekeeper.resolve_scope(session, principal)
                return self.miner.page(session, page, limit, scope, cancel)
        except DeduplicationError:
            raise
        except SQLAlchemyError as e:
            logger.exception(f"Failed to mine duplicate clusters: {e}")
            raise ClustersFailed() from e
