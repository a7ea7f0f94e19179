"""LineageEvaluation model: audit trail of derived attribute evaluations."""

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, CreatedAtMixin, enum_column
from app.models.enums import LineageValueType


class LineageEvaluation(Base, CreatedAtMixin):
    """One evaluated derived attribute for a case version.

    ``inputs`` holds the source attribute values as they were read when the
    rule ran, not values recomputed later.
    """

    __tablename__ = "kyc_lineage_evaluations"

    id: Mapped[int] = mapped_column(primary_key=True)
    case_name: Mapped[str] = mapped_column(String(200), nullable=False)
    case_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    derived_code: Mapped[str] = mapped_column(String(100), nullable=False)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    value_type: Mapped[str | None] = mapped_column(
        enum_column(LineageValueType, "lineage_value_type_enum"),
        nullable=True,
    )
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    inputs: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    rule: Mapped[str] = mapped_column(Text, nullable=False)
    jurisdiction: Mapped[str | None] = mapped_column(String(50), nullable=True)
    regulation_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    evaluated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_lineage_evaluations_case", "case_name"),
        Index("idx_lineage_evaluations_derived", "derived_code"),
    )

    def __repr__(self) -> str:
        return (
            f"<LineageEvaluation({self.case_name} v{self.case_version}, "
            f"{self.derived_code}={self.value})>"
        )
