"""Shared fixtures for the CaseFlow deduplication test suite."""

import itertools
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from caseflow.access import Principal
from caseflow.db.models import Case, Client, User, UserClientAssignment, UserProductAssignment
from caseflow.db.session import init_db, make_engine, make_session_factory
from caseflow.dedup.service import DeduplicationService
from caseflow.dedup.settings import MatchSettings
from caseflow.security import issue_access_token

TEST_SECRET = "test-secret"

ADMIN = Principal(id="u-admin", role="SUPER_ADMIN", name="Asha Admin")
BACKEND = Principal(id="u-backend", role="BACKEND", name="Bala Backend")
BACKEND_NO_CLIENTS = Principal(id="u-orphan", role="BACKEND", name="Orphan User")
FIELD_AGENT = Principal(id="u-field", role="FIELD_AGENT", name="Farah Field")


# ═══════════════════════════════════════════════════
# Database
# ═══════════════════════════════════════════════════

@pytest.fixture
def engine():
    eng = make_engine("sqlite://", echo=False)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    factory = make_session_factory(engine)
    with factory.begin() as s:
        s.add_all([
            Client(id=1, name="Acme Bank"),
            Client(id=2, name="Beta Finance"),
        ])
        s.add_all([
            User(id=p.id, name=p.name, role=p.role)
            for p in (ADMIN, BACKEND, BACKEND_NO_CLIENTS, FIELD_AGENT)
        ])
        s.add(UserClientAssignment(user_id=BACKEND.id, client_id=1))
    return factory


@pytest.fixture
def make_case(session_factory):
    """Insert a case and return its id. Each call is one minute newer than the last."""
    counter = itertools.count(1)
    base = datetime(2024, 1, 1, 9, 0, 0)

    def _make(**fields):
        n = next(counter)
        values = {
            "case_number": f"CASE-{n:04d}",
            "applicant_name": f"Applicant {n}",
            "status": "PENDING",
            "client_id": 1,
            "product_id": 10,
            "created_at": base + timedelta(minutes=n),
        }
        values.update(fields)
        with session_factory.begin() as s:
            case = Case(**values)
            s.add(case)
            s.flush()
            return case.id

    return _make


@pytest.fixture
def assign_product(session_factory):
    def _assign(user_id: str, product_id: int):
        with session_factory.begin() as s:
            s.add(UserProductAssignment(user_id=user_id, product_id=product_id))
    return _assign


# ═══════════════════════════════════════════════════
# Service / HTTP
# ═══════════════════════════════════════════════════

@pytest.fixture
def settings():
    return MatchSettings(auth_secret=TEST_SECRET)


@pytest.fixture
def service(session_factory, settings):
    return DeduplicationService(session_factory, settings)


@pytest.fixture
def app(session_factory, settings):
    from caseflow.main import create_app
    return create_app(session_factory=session_factory, settings=settings, cluster_scan_interval=0)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def _auth_header(principal: Principal) -> dict:
    token = issue_access_token(principal.id, principal.role, TEST_SECRET, name=principal.name)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """``auth_headers(principal)`` -> bearer header signed with the test secret."""
    return _auth_header


@pytest.fixture
def admin():
    return ADMIN


@pytest.fixture
def backend_user():
    return BACKEND


@pytest.fixture
def orphan_user():
    return BACKEND_NO_CLIENTS


@pytest.fixture
def field_agent():
    return FIELD_AGENT


@pytest.fixture
def admin_headers():
    return _auth_header(ADMIN)


@pytest.fixture
def backend_headers():
    return _auth_header(BACKEND)
