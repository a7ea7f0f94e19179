"""Pydantic schemas for the case audit surface."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, computed_field

from kyc.diff import short_hash


class CaseVersionSchema(BaseModel):
    """One stored version of a case."""

    case_name: str
    version: int
    hash: str
    created_at: datetime

    model_config = {"from_attributes": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def short_hash(self) -> str:
        return short_hash(self.hash)


class CaseSummarySchema(BaseModel):
    """A case with its version count, for listings."""

    name: str
    version_count: int = Field(ge=0)
    status: str
    last_updated: datetime | None

    model_config = {"from_attributes": True}


class AmendmentSchema(BaseModel):
    """Audit record of an applied amendment."""

    case_name: str
    step: str
    change_type: str
    diff: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class LineageEvaluationSchema(BaseModel):
    """A recorded derived attribute evaluation."""

    case_name: str
    case_version: int | None
    derived_code: str
    value: str | None
    value_type: str | None
    success: bool
    error: str | None
    inputs: dict[str, Any] | None
    rule: str
    jurisdiction: str | None
    regulation_code: str | None
    evaluated_at: datetime

    model_config = {"from_attributes": True}
