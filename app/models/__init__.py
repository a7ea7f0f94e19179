"""SQLAlchemy models for the KYC case ledger."""

from app.models.base import Base, CreatedAtMixin, async_session_maker
from app.models.case import KycCaseRecord
from app.models.enums import CaseStatus, LineageValueType, TokenStatus
from app.models.lineage import LineageEvaluation
from app.models.version import CaseAmendment, CaseVersion

__all__ = [
    # Base
    "Base",
    "CreatedAtMixin",
    "async_session_maker",
    # Enums
    "CaseStatus",
    "LineageValueType",
    "TokenStatus",
    # Ledger
    "KycCaseRecord",
    "CaseVersion",
    "CaseAmendment",
    "LineageEvaluation",
]
