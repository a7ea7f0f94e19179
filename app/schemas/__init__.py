"""Pydantic schemas module.

This module contains Pydantic models used for the read-side audit surface:
case listings, version history, amendment records and lineage evaluations.

Naming convention:
- Schema suffix to distinguish from SQLAlchemy models
"""

from app.schemas.case import (
    AmendmentSchema,
    CaseSummarySchema,
    CaseVersionSchema,
    LineageEvaluationSchema,
)

__all__ = [
    "AmendmentSchema",
    "CaseSummarySchema",
    "CaseVersionSchema",
    "LineageEvaluationSchema",
]
