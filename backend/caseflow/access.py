"""Access Gatekeeper: which cases a principal may see.

  - SUPER_ADMIN and every role outside ``SCOPED_ROLES``: unrestricted
  - BACKEND: limited to the clients in ``user_client_assignments``; when the
    user also has rows in ``user_product_assignments`` the product list
    narrows the scope further
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from caseflow.config import SCOPED_ROLES, SUPER_ADMIN_ROLE
from caseflow.db.models import Case, UserClientAssignment, UserProductAssignment
from caseflow.errors import CaseAccessDenied, CaseNotFound, NoClientAccess, Unauthorized

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as decoded from the bearer token."""
    id: str | None
    role: str | None
    name: str | None = None


@dataclass(frozen=True)
class AccessScope:
    """Client / product filter applied to every case query.

    ``None`` for a dimension means "no restriction on it".
    """
    client_ids: frozenset[int] | None = None
    product_ids: frozenset[int] | None = None

    @property
    def unrestricted(self) -> bool:
        return self.client_ids is None and self.product_ids is None

    def permits(self, client_id: int | None, product_id: int | None) -> bool:
        if self.client_ids is not None and client_id not in self.client_ids:
            return False
        if self.product_ids is not None and product_id not in self.product_ids:
            return False
        return True

    def apply(self, stmt):
        """Add the scope's WHERE clauses to a select over ``Case``."""
        if self.client_ids is not None:
            stmt = stmt.where(Case.client_id.in_(sorted(self.client_ids)))
        if self.product_ids is not None:
            stmt = stmt.where(Case.product_id.in_(sorted(self.product_ids)))
        return stmt


UNRESTRICTED = AccessScope()


class AccessGatekeeper:
    """Resolves scopes and checks case-level access. Stateless."""

    def resolve_scope(self, session: Session, principal: Principal | None) -> AccessScope:
        if principal is None or not principal.id or not principal.role:
            raise Unauthorized()
        if principal.role == SUPER_ADMIN_ROLE or principal.role not in SCOPED_ROLES:
            return UNRESTRICTED

        client_ids = frozenset(session.scalars(
            select(UserClientAssignment.client_id)
            .where(UserClientAssignment.user_id == principal.id)
        ).all())
        if not client_ids:
            logger.warning(f"User {principal.id} ({principal.role}) has no assigned clients")
            raise NoClientAccess()

        product_ids = frozenset(session.scalars(
            select(UserProductAssignment.product_id)
            .where(UserProductAssignment.user_id == principal.id)
        ).all())
        return AccessScope(client_ids=client_ids, product_ids=product_ids or None)

    def check_case(
        self,
        session: Session,
        principal: Principal | None,
        case_id: str,
        *,
        missing_ok: bool = False,
    ) -> AccessScope:
        """Verify the principal may act on ``case_id`` and return its scope.

        An unknown case raises ``CaseNotFound`` unless ``missing_ok``; the
        decision path lets the foreign key report that instead.
        """
        scope = self.resolve_scope(session, principal)
        row = session.execute(
            select(Case.client_id, Case.product_id).where(Case.id == case_id)
        ).first()
        if row is None:
            if missing_ok:
                return scope
            raise CaseNotFound()
        if not scope.permits(row.client_id, row.product_id):
            logger.warning(
                f"User {principal.id} denied access to case {case_id} (client {row.client_id})"
            )
            raise CaseAccessDenied()
        return scope
