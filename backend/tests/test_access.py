"""Tests for the access gatekeeper and signed tokens.

Covers:
  - Role-based scope resolution (SUPER_ADMIN, BACKEND, other roles)
  - Case-level access checks
  - Access-token and search-token signing / verification
"""

import pytest

from caseflow.access import UNRESTRICTED, AccessGatekeeper, AccessScope, Principal
from caseflow.dedup.models import SearchCriteria
from caseflow.errors import CaseAccessDenied, CaseNotFound, InvalidSearchToken, NoClientAccess, Unauthorized
from caseflow.security import (
    decode_access_token,
    issue_access_token,
    issue_search_token,
    sign_claims,
    verify_claims,
    verify_search_token,
)


# ═══════════════════════════════════════════════════
# Scope resolution
# ═══════════════════════════════════════════════════

class TestResolveScope:
    def test_super_admin_unrestricted(self, session_factory, admin):
        with session_factory() as s:
            assert AccessGatekeeper().resolve_scope(s, admin) is UNRESTRICTED

    def test_unscoped_role_unrestricted(self, session_factory, field_agent):
        with session_factory() as s:
            assert AccessGatekeeper().resolve_scope(s, field_agent).unrestricted

    def test_backend_scoped_to_assigned_clients(self, session_factory, backend_user):
        with session_factory() as s:
            scope = AccessGatekeeper().resolve_scope(s, backend_user)
        assert scope == AccessScope(client_ids=frozenset({1}), product_ids=None)

    def test_backend_product_assignments_narrow_scope(self, session_factory, backend_user, assign_product):
        assign_product(backend_user.id, 10)
        with session_factory() as s:
            scope = AccessGatekeeper().resolve_scope(s, backend_user)
        assert scope.product_ids == frozenset({10})
        assert scope.permits(1, 10)
        assert not scope.permits(1, 20)
        assert not scope.permits(2, 10)

    def test_backend_without_clients(self, session_factory, orphan_user):
        with session_factory() as s:
            with pytest.raises(NoClientAccess) as exc:
                AccessGatekeeper().resolve_scope(s, orphan_user)
        assert exc.value.status_code == 403

    @pytest.mark.parametrize("principal", [None, Principal(id=None, role="BACKEND"), Principal(id="u", role="")])
    def test_incomplete_principal(self, session_factory, principal):
        with session_factory() as s:
            with pytest.raises(Unauthorized) as exc:
                AccessGatekeeper().resolve_scope(s, principal)
        assert exc.value.code == "UNAUTHORIZED"


class TestCheckCase:
    def test_in_scope_case_allowed(self, session_factory, make_case, backend_user):
        case_id = make_case(client_id=1)
        with session_factory() as s:
            AccessGatekeeper().check_case(s, backend_user, case_id)

    def test_out_of_scope_case_denied(self, session_factory, make_case, backend_user):
        case_id = make_case(client_id=2)
        with session_factory() as s:
            with pytest.raises(CaseAccessDenied):
                AccessGatekeeper().check_case(s, backend_user, case_id)

    def test_unknown_case(self, session_factory, admin):
        with session_factory() as s:
            with pytest.raises(CaseNotFound):
                AccessGatekeeper().check_case(s, admin, "missing")
            AccessGatekeeper().check_case(s, admin, "missing", missing_ok=True)


# ═══════════════════════════════════════════════════
# Tokens
# ═══════════════════════════════════════════════════

class TestClaims:
    def test_round_trip(self):
        token = sign_claims({"sub": "u1", "exp": 4_000_000_000}, "s3cret")
        assert verify_claims(token, "s3cret") == {"sub": "u1", "exp": 4_000_000_000}

    def test_wrong_secret(self):
        token = sign_claims({"sub": "u1", "exp": 4_000_000_000}, "s3cret")
        assert verify_claims(token, "other") is None

    def test_expired(self):
        token = sign_claims({"sub": "u1", "exp": 1000}, "s3cret")
        assert verify_claims(token, "s3cret") is None

    def test_missing_exp(self):
        assert verify_claims(sign_claims({"sub": "u1"}, "s3cret"), "s3cret") is None

    def test_tampered_payload(self):
        token = sign_claims({"sub": "u1", "exp": 4_000_000_000}, "s3cret")
        forged_payload = sign_claims({"sub": "admin", "exp": 4_000_000_000}, "x").split(".")[0]
        assert verify_claims(f"{forged_payload}.{token.split('.')[1]}", "s3cret") is None

    @pytest.mark.parametrize("garbage", ["", "abc", "a.b.c", "!!!.???", "café.abc", "eyJ9.sïg", None])
    def test_garbage(self, garbage):
        assert verify_claims(garbage, "s3cret") is None

    def test_access_token_decodes_to_principal(self):
        token = issue_access_token("u-1", "BACKEND", "s3cret", name="Bala")
        assert decode_access_token(token, "s3cret") == Principal(id="u-1", role="BACKEND", name="Bala")


class TestSearchTokens:
    def test_accepts_same_ids_in_any_order(self):
        criteria = SearchCriteria(pan_number="ABCDE1234F")
        token = issue_search_token(criteria, ["b", "a"], "s3cret", ttl_seconds=60)
        verify_search_token(token, criteria, ["a", "b"], "s3cret")

    def test_rejects_expired(self):
        criteria = SearchCriteria(pan_number="ABCDE1234F")
        token = issue_search_token(criteria, ["a"], "s3cret", ttl_seconds=-1)
        with pytest.raises(InvalidSearchToken):
            verify_search_token(token, criteria, ["a"], "s3cret")

    def test_access_token_is_not_a_search_token(self):
        criteria = SearchCriteria()
        token = issue_access_token("u-1", "BACKEND", "s3cret")
        with pytest.raises(InvalidSearchToken):
            verify_search_token(token, criteria, [], "s3cret")
