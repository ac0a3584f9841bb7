"""Tests for the duplicate cluster miner.

Covers:
  - Three cases sharing a PAN form one cluster; unrelated cases excluded
  - per_field union-find vs legacy coalesce grouping
  - Cluster and member ordering, pagination and clamping
  - Keyset paging, scope filtering and cancellation
"""

import threading
from dataclasses import replace

import pytest

from caseflow.dedup.clusters import ClusterMiner, ClusterScanCancelled
from caseflow.dedup.service import DeduplicationService
from caseflow.dedup.settings import MatchSettings
from caseflow.errors import NoClientAccess


def _mine(session_factory, **overrides):
    miner = ClusterMiner(MatchSettings(**overrides))
    with session_factory() as s:
        return miner.mine(s)


# ═══════════════════════════════════════════════════
# Grouping
# ═══════════════════════════════════════════════════

class TestSharedPan:
    @pytest.mark.parametrize("grouping", ["per_field", "coalesce"])
    def test_three_sharing_pan_one_cluster(self, session_factory, make_case, grouping):
        ids = {make_case(pan_number="ABCDE1234F") for _ in range(3)}
        make_case(pan_number="PQRST6789Z")
        make_case(applicant_phone="9876543210")
        clusters = _mine(session_factory, cluster_grouping=grouping)
        assert len(clusters) == 1
        assert clusters[0].group_key == "ABCDE1234F"
        assert clusters[0].case_count == 3
        assert {c.id for c in clusters[0].cases} == ids

    def test_members_newest_first(self, session_factory, make_case):
        first = make_case(pan_number="ABCDE1234F")
        second = make_case(pan_number="ABCDE1234F")
        third = make_case(pan_number="ABCDE1234F")
        cluster = _mine(session_factory)[0]
        assert [c.id for c in cluster.cases] == [third, second, first]

    def test_cases_without_identifiers_ignored(self, session_factory, make_case):
        make_case(applicant_name="Same Name")
        make_case(applicant_name="Same Name")
        assert _mine(session_factory) == []


class TestPerFieldVsCoalesce:
    def test_overlapping_buckets_unioned(self, session_factory, make_case):
        a = make_case(pan_number="ABCDE1234F")
        b = make_case(pan_number="ABCDE1234F", applicant_phone="9876543210")
        c = make_case(applicant_phone="9876543210")
        cluster = _mine(session_factory)[0]
        assert {m.id for m in cluster.cases} == {a, b, c}
        assert cluster.shared_identifiers == [
            ("panNumber", "ABCDE1234F"), ("applicantPhone", "9876543210"),
        ]
        assert cluster.group_key == "ABCDE1234F"

    def test_coalesce_misses_match_hidden_behind_other_pan(self, session_factory, make_case):
        make_case(pan_number="ABCDE1234F", bank_account_number="00123456")
        make_case(pan_number="PQRST6789Z", bank_account_number="00123456")
        assert _mine(session_factory, cluster_grouping="coalesce") == []
        per_field = _mine(session_factory, cluster_grouping="per_field")
        assert len(per_field) == 1
        assert per_field[0].group_key == "00123456"
        assert per_field[0].shared_identifiers == [("bankAccountNumber", "00123456")]

    def test_coalesce_conflates_identifier_types(self, session_factory, make_case):
        make_case(aadhaar_number="123456789012")
        make_case(bank_account_number="123456789012")
        coalesced = _mine(session_factory, cluster_grouping="coalesce")
        assert len(coalesced) == 1 and coalesced[0].case_count == 2
        assert _mine(session_factory, cluster_grouping="per_field") == []

    def test_invalid_grouping_rejected(self):
        with pytest.raises(ValueError):
            MatchSettings(cluster_grouping="by_vibes")


# ═══════════════════════════════════════════════════
# Ordering & pagination
# ═══════════════════════════════════════════════════

class TestPagination:
    @pytest.fixture
    def three_clusters(self, make_case):
        for _ in range(3):
            make_case(pan_number="BBBBB2222B")
        for _ in range(2):
            make_case(pan_number="CCCCC3333C")
        for _ in range(2):
            make_case(pan_number="AAAAA1111A")

    def test_ordered_by_count_then_key(self, session_factory, three_clusters):
        keys = [c.group_key for c in _mine(session_factory)]
        assert keys == ["BBBBB2222B", "AAAAA1111A", "CCCCC3333C"]

    def test_pages(self, session_factory, three_clusters):
        miner = ClusterMiner(MatchSettings())
        with session_factory() as s:
            p1 = miner.page(s, page=1, limit=2)
            p2 = miner.page(s, page=2, limit=2)
        assert [c.group_key for c in p1.clusters] == ["BBBBB2222B", "AAAAA1111A"]
        assert [c.group_key for c in p2.clusters] == ["CCCCC3333C"]
        assert p1.to_dict()["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}

    def test_defaults_and_clamping(self, session_factory, three_clusters):
        miner = ClusterMiner(MatchSettings())
        with session_factory() as s:
            assert miner.page(s).limit == 20
            assert miner.page(s, limit=10_000).limit == 100
            assert miner.page(s, page=0).page == 1

    def test_page_past_end_is_empty(self, session_factory, three_clusters):
        miner = ClusterMiner(MatchSettings())
        with session_factory() as s:
            page = miner.page(s, page=5, limit=2)
        assert page.clusters == [] and page.total == 3


# ═══════════════════════════════════════════════════
# Scan mechanics
# ═══════════════════════════════════════════════════

class TestScan:
    def test_small_batches_see_every_case(self, session_factory, make_case):
        for _ in range(7):
            make_case(pan_number="ABCDE1234F")
        clusters = _mine(session_factory, cluster_scan_batch_size=2)
        assert clusters[0].case_count == 7

    def test_cancel_between_pages(self, session_factory, make_case):
        for _ in range(5):
            make_case(pan_number="ABCDE1234F")
        cancel = threading.Event()
        miner = ClusterMiner(MatchSettings(cluster_scan_batch_size=2))
        with session_factory() as s:
            it = miner.iter_cases(s, cancel=cancel)
            next(it)
            next(it)
            cancel.set()
            with pytest.raises(ClusterScanCancelled):
                list(it)

    def test_service_applies_scope(self, service, make_case, backend_user, orphan_user):
        for _ in range(2):
            make_case(pan_number="ABCDE1234F", client_id=1)
        for _ in range(2):
            make_case(pan_number="PQRST6789Z", client_id=2)
        page = service.clusters(backend_user)
        assert [c.group_key for c in page.clusters] == ["ABCDE1234F"]
        with pytest.raises(NoClientAccess):
            service.clusters(orphan_user)

    def test_service_respects_configured_grouping(self, session_factory, settings, make_case, admin):
        make_case(aadhaar_number="123456789012")
        make_case(bank_account_number="123456789012")
        legacy = DeduplicationService(session_factory, replace(settings, cluster_grouping="coalesce"))
        assert legacy.clusters(admin).total == 1
