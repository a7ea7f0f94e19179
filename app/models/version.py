"""CaseVersion and CaseAmendment models: the append-only case ledger.

A CaseVersion is an immutable snapshot of a case's serialized text. Version
numbers per case start at 1 and increase by one; the unique constraint on
(case_name, version) makes a concurrent writer that computed the same next
number fail instead of silently duplicating it.

A CaseAmendment is the audit record written after each successful
amendment. It is written separately from the version row.
"""

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, CreatedAtMixin


class CaseVersion(Base, CreatedAtMixin):
    """A serialized snapshot of a case at one version."""

    __tablename__ = "kyc_case_versions"

    id: Mapped[int] = mapped_column(primary_key=True)
    case_name: Mapped[str] = mapped_column(
        String(200),
        ForeignKey("kyc_cases.name", ondelete="CASCADE"),
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    dsl_snapshot: Mapped[str] = mapped_column(Text, nullable=False)
    hash: Mapped[str] = mapped_column(
        String(64), nullable=False, doc="SHA-256 of dsl_snapshot, lowercase hex"
    )

    __table_args__ = (
        UniqueConstraint("case_name", "version", name="uq_kyc_case_versions_case_version"),
        Index("idx_kyc_case_versions_case", "case_name"),
    )

    def __repr__(self) -> str:
        return f"<CaseVersion({self.case_name} v{self.version}, {self.hash[:12]})>"


class CaseAmendment(Base, CreatedAtMixin):
    """Audit record for one applied amendment."""

    __tablename__ = "kyc_case_amendments"

    id: Mapped[int] = mapped_column(primary_key=True)
    case_name: Mapped[str] = mapped_column(String(200), nullable=False)
    step: Mapped[str] = mapped_column(String(100), nullable=False)
    change_type: Mapped[str] = mapped_column(
        String(100), nullable=False, doc='e.g. "policy-injection", "token-update:approved"'
    )
    diff: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_kyc_case_amendments_case", "case_name"),)

    def __repr__(self) -> str:
        return f"<CaseAmendment({self.case_name}, {self.step} -> {self.change_type})>"
