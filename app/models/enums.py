"""Enum types shared by the database schema and the case domain."""

import enum


class CaseStatus(str, enum.Enum):
    """Overall status of a KYC case (also used for function markers)."""

    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"


class TokenStatus(str, enum.Enum):
    """Status carried by a case's finalization token."""

    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    REVIEW = "review"


class LineageValueType(str, enum.Enum):
    """Type tag stored alongside a derived attribute value."""

    BOOLEAN = "boolean"
    NUMERIC = "numeric"
    STRING = "string"
