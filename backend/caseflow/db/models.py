"""SQLAlchemy models for the deduplication engine and its collaborators.

Only the identifying slice of ``cases`` is modelled here; case CRUD,
users, clients and product administration are owned by other services
and share these tables.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from caseflow.errors import AuditRecordImmutable

# JSONB on PostgreSQL (GIN-indexable), plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")

DECISION_VALUES = ("CREATE_NEW", "USE_EXISTING", "MERGE_CASES")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    role: Mapped[str] = mapped_column(String(30), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)


class Case(Base):
    """Identifying fields of a verification case."""

    __tablename__ = "cases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    case_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    applicant_name: Mapped[str] = mapped_column(String(200), nullable=False)
    applicant_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    applicant_email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    pan_number: Mapped[str | None] = mapped_column(String(10), nullable=True)
    aadhaar_number: Mapped[str | None] = mapped_column(String(12), nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String(34), nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="PENDING")
    client_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("clients.id"), nullable=True
    )
    product_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    client: Mapped[Client | None] = relationship()

    __table_args__ = (
        # Fuzzy name matching (pg_trgm)
        Index(
            "idx_cases_applicant_name_trgm", "applicant_name",
            postgresql_using="gin",
            postgresql_ops={"applicant_name": "gin_trgm_ops"},
        ),
        # Exact identifier lookups; non-unique (see DESIGN.md on the CREATE_NEW race)
        Index("idx_cases_pan_number", "pan_number",
              postgresql_where=text("pan_number IS NOT NULL")),
        Index("idx_cases_aadhaar_number", "aadhaar_number",
              postgresql_where=text("aadhaar_number IS NOT NULL")),
        Index("idx_cases_applicant_phone", "applicant_phone",
              postgresql_where=text("applicant_phone IS NOT NULL")),
        Index("idx_cases_applicant_email", "applicant_email",
              postgresql_where=text("applicant_email IS NOT NULL")),
        Index("idx_cases_bank_account_number", "bank_account_number",
              postgresql_where=text("bank_account_number IS NOT NULL")),
        Index("idx_cases_client_id", "client_id"),
    )


class DeduplicationAudit(Base):
    """Append-only record of one operator deduplication decision."""

    __tablename__ = "case_deduplication_audit"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    case_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False
    )
    search_criteria: Mapped[dict] = mapped_column(JSONType, nullable=False)
    duplicates_found: Mapped[list] = mapped_column(JSONType, nullable=False)
    user_decision: Mapped[str] = mapped_column(String(20), nullable=False)
    rationale: Mapped[str] = mapped_column(Text, nullable=False)
    selected_existing_case_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    performed_by: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    performer: Mapped[User] = relationship()

    __table_args__ = (
        CheckConstraint(
            "user_decision IN ({})".format(", ".join(f"'{d}'" for d in DECISION_VALUES)),
            name="ck_case_deduplication_audit_decision",
        ),
        Index("idx_case_deduplication_audit_case_id", "case_id"),
        Index("idx_case_deduplication_audit_performed_by", "performed_by"),
        Index("idx_case_deduplication_audit_user_decision", "user_decision"),
        Index("idx_case_deduplication_audit_performed_at", "performed_at"),
        Index("idx_case_deduplication_audit_search_criteria", "search_criteria",
              postgresql_using="gin"),
        Index("idx_case_deduplication_audit_duplicates_found", "duplicates_found",
              postgresql_using="gin"),
    )


_IMMUTABLE_AUDIT_FIELDS = (
    "case_id",
    "search_criteria",
    "duplicates_found",
    "user_decision",
    "rationale",
    "selected_existing_case_id",
    "performed_by",
    "performed_at",
)


@event.listens_for(DeduplicationAudit, "before_update")
def _reject_audit_update(mapper, connection, target):
    state = inspect(target)
    changed = [f for f in _IMMUTABLE_AUDIT_FIELDS if state.attrs[f].history.has_changes()]
    if changed:
        raise AuditRecordImmutable(
            f"Audit record {target.id} is write-once; refused change to {', '.join(changed)}"
        )


@event.listens_for(DeduplicationAudit, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditRecordImmutable(
        f"Audit record {target.id} can only be removed by deleting its case"
    )


class UserClientAssignment(Base):
    """Clients a BACKEND user may see."""

    __tablename__ = "user_client_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    client_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "client_id", name="uk_user_client_assignments_user_client"),
        Index("idx_user_client_assignments_user_id", "user_id"),
        Index("idx_user_client_assignments_client_id", "client_id"),
    )


class UserProductAssignment(Base):
    """Products a BACKEND user may see."""

    __tablename__ = "user_product_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uk_user_product_assignments_user_product"),
        Index("idx_user_product_assignments_user_id", "user_id"),
    )
