"""KycCaseRecord model: one row per known case name.

The structured case itself lives in its version snapshots; this row only
tracks the overall status and when the case was last amended, for the
case listing.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, enum_column
from app.models.enums import CaseStatus

if TYPE_CHECKING:
    from app.models.version import CaseVersion


class KycCaseRecord(Base):
    """A KYC case known to the ledger."""

    __tablename__ = "kyc_cases"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(
        enum_column(CaseStatus, "case_status_enum"),
        default=CaseStatus.PENDING.value,
        nullable=False,
    )
    client_business_unit: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    versions: Mapped[list["CaseVersion"]] = relationship(
        order_by="CaseVersion.version",
        viewonly=True,
    )

    __table_args__ = (Index("idx_kyc_cases_status", "status"),)

    def __repr__(self) -> str:
        return f"<KycCaseRecord(name={self.name!r}, status={self.status})>"
