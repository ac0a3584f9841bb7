"""Cluster Miner: offline scan for groups of cases that share an identifier.

Grouping modes (``CLUSTER_GROUPING``):

  per_field  one bucket per (identifier field, value); buckets that share a
             case are merged with union-find, so a cluster is a connected
             component of cases linked by equal PAN / Aadhaar / phone /
             bank account
  coalesce   legacy grouping by COALESCE(pan, aadhaar, phone, bank_account)
             in SQL; values of different identifier types share one key
             space and a case is only grouped by its first non-null field

This is a full scan meant for admin review and the periodic job; it is
never run on the intake path.
"""

import logging
import threading
from collections import defaultdict
from typing import Iterator

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from caseflow.access import UNRESTRICTED, AccessScope
from caseflow.config import TRACE_ENABLED
from caseflow.db.models import Case
from caseflow.dedup.models import CaseSummary, ClusterPage, DuplicateCluster
from caseflow.dedup.search import summary_from_row
from caseflow.dedup.settings import MatchSettings

logger = logging.getLogger(__name__)

# Order matters: it decides which shared value becomes the group key
IDENTIFIER_COLUMNS = (
    ("panNumber", Case.pan_number),
    ("aadhaarNumber", Case.aadhaar_number),
    ("applicantPhone", Case.applicant_phone),
    ("bankAccountNumber", Case.bank_account_number),
)
_FIELD_RANK = {name: i for i, (name, _) in enumerate(IDENTIFIER_COLUMNS)}

_SUMMARY_COLUMNS = (
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
)


class ClusterScanCancelled(Exception):
    """The scan's cancel event was set between two pages."""


def _trace(msg: str):
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


class _UnionFind:
    """Quick-union with rank and path halving."""

    def __init__(self, n: int) -> None:
        self.parent = list(range(n))
        self.rank = [0] * n

    def find(self, x: int) -> int:
        while self.parent[x] != x:
            self.parent[x] = self.parent[self.parent[x]]
            x = self.parent[x]
        return x

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        if self.rank[ra] < self.rank[rb]:
            ra, rb = rb, ra
        self.parent[rb] = ra
        if self.rank[ra] == self.rank[rb]:
            self.rank[ra] += 1


def _newest_first(cases: list[CaseSummary]) -> list[CaseSummary]:
    # two stable sorts: id ascending within equal timestamps
    ordered = sorted(cases, key=lambda c: c.id)
    return sorted(ordered, key=lambda c: c.created_at, reverse=True)


def _identifier_values(case: CaseSummary) -> Iterator[tuple[str, str]]:
    for field_name, column in IDENTIFIER_COLUMNS:
        value = getattr(case, column.key)
        if value:
            yield field_name, value


def _has_identifier():
    return or_(*(column.is_not(None) for _, column in IDENTIFIER_COLUMNS))


class ClusterMiner:
    def __init__(self, settings: MatchSettings):
        self.settings = settings

    # ── Scan ──

    def iter_cases(
        self,
        session: Session,
        scope: AccessScope = UNRESTRICTED,
        cancel: threading.Event | None = None,
    ) -> Iterator[CaseSummary]:
        """Yield every in-scope case carrying an identifier, in keyset pages by id."""
        last_id = None
        pages = 0
        while True:
            if cancel is not None and cancel.is_set():
                logger.info(f"Cluster scan cancelled after {pages} page(s)")
                raise ClusterScanCancelled()
            stmt = select(*_SUMMARY_COLUMNS).where(_has_identifier())
            stmt = scope.apply(stmt)
            if last_id is not None:
                stmt = stmt.where(Case.id > last_id)
            stmt = stmt.order_by(Case.id).limit(self.settings.cluster_scan_batch_size)

            rows = session.execute(stmt).all()
            pages += 1
            for row in rows:
                yield summary_from_row(row)
            if len(rows) < self.settings.cluster_scan_batch_size:
                return
            last_id = rows[-1].id

    # ── Grouping ──

    def mine(
        self,
        session: Session,
        scope: AccessScope = UNRESTRICTED,
        cancel: threading.Event | None = None,
    ) -> list[DuplicateCluster]:
        """All clusters, largest first, ties broken by group key."""
        if self.settings.cluster_grouping == "coalesce":
            clusters = self._mine_coalesce(session, scope, cancel)
        else:
            clusters = self._mine_per_field(session, scope, cancel)
        clusters.sort(key=lambda c: (-c.case_count, c.group_key))
        return clusters

    def _mine_per_field(self, session, scope, cancel) -> list[DuplicateCluster]:
        cases: list[CaseSummary] = []
        buckets: dict[tuple[str, str], list[int]] = defaultdict(list)
        for case in self.iter_cases(session, scope, cancel):
            idx = len(cases)
            cases.append(case)
            for key in _identifier_values(case):
                buckets[key].append(idx)

        shared = {key: members for key, members in buckets.items() if len(members) > 1}
        uf = _UnionFind(len(cases))
        for members in shared.values():
            for other in members[1:]:
                uf.union(members[0], other)

        components: dict[int, set[int]] = defaultdict(set)
        links: dict[int, list[tuple[str, str]]] = defaultdict(list)
        for key, members in shared.items():
            root = uf.find(members[0])
            components[root].update(members)
            links[root].append(key)

        clusters = []
        for root, members in components.items():
            identifiers = sorted(links[root], key=lambda kv: (_FIELD_RANK[kv[0]], kv[1]))
            clusters.append(DuplicateCluster(
                group_key=identifiers[0][1],
                cases=_newest_first([cases[i] for i in members]),
                shared_identifiers=identifiers,
            ))
        _trace(
            f"CLUSTERS per_field scanned={len(cases)} shared_buckets={len(shared)} "
            f"clusters={len(clusters)}"
        )
        return clusters

    def _mine_coalesce(self, session, scope, cancel) -> list[DuplicateCluster]:
        key_expr = func.coalesce(*(column for _, column in IDENTIFIER_COLUMNS))
        grouped = scope.apply(
            select(key_expr.label("group_key"))
            .where(_has_identifier())
            .group_by(key_expr)
            .having(func.count() > 1)
        )
        keys = [row.group_key for row in session.execute(grouped)]

        members: dict[str, list[CaseSummary]] = defaultdict(list)
        if keys:
            if cancel is not None and cancel.is_set():
                raise ClusterScanCancelled()
            stmt = scope.apply(
                select(*_SUMMARY_COLUMNS, key_expr.label("group_key"))
                .where(key_expr.in_(keys))
            )
            for row in session.execute(stmt):
                members[row.group_key].append(summary_from_row(row))

        clusters = []
        for key, group in members.items():
            fields = {
                field_name for case in group
                for field_name, value in _identifier_values(case) if value == key
            }
            clusters.append(DuplicateCluster(
                group_key=key,
                cases=_newest_first(group),
                shared_identifiers=[(f, key) for f in sorted(fields, key=_FIELD_RANK.get)],
            ))
        _trace(f"CLUSTERS coalesce groups={len(clusters)}")
        return clusters

    # ── Pagination ──

    def page(
        self,
        session: Session,
        page: int = 1,
        limit: int | None = None,
        scope: AccessScope = UNRESTRICTED,
        cancel: threading.Event | None = None,
    ) -> ClusterPage:
        """One page of clusters; out-of-range values are clamped."""
        limit = limit or self.settings.cluster_default_page_size
        limit = max(1, min(limit, self.settings.cluster_max_page_size))
        page = max(1, page)

        clusters = self.mine(session, scope, cancel)
        start = (page - 1) * limit
        result = ClusterPage(
            clusters=clusters[start:start + limit],
            page=page,
            limit=limit,
            total=len(clusters),
        )
        logger.info(
            f"Duplicate clusters: {result.total} total, page {page}/{result.total_pages} "
            f"({self.settings.cluster_grouping})"
        )
        return result
