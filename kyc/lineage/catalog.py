"""Standard derived attributes and the public attributes a case exposes."""

from __future__ import annotations

from typing import Any

from kyc.domain import KycCase
from kyc.lineage.evaluator import DerivedAttributeSpec

# HARDCODED ASSUMPTION: country lists follow the FATF high-risk list and the
# common sanctions programmes at the time of writing. Review when either
# list is republished.
HIGH_RISK_COUNTRIES = ("IR", "KP", "SY", "YE", "AF", "MM")
SANCTIONED_COUNTRIES = ("IR", "KP", "SY", "CU", "RU")


def _country_list(codes: tuple[str, ...]) -> str:
    return "[" + ", ".join(f'"{c}"' for c in codes) + "]"


STANDARD_DERIVATIONS: tuple[DerivedAttributeSpec, ...] = (
    DerivedAttributeSpec(
        code="HIGH_RISK_JURISDICTION_FLAG",
        rule=f"TAX_RESIDENCY_COUNTRY in {_country_list(HIGH_RISK_COUNTRIES)}",
        source_attributes=("TAX_RESIDENCY_COUNTRY",),
        description="Tax residency is a high-risk jurisdiction",
        jurisdiction="GLOBAL",
        regulation="AMLD5",
    ),
    DerivedAttributeSpec(
        code="SANCTIONED_COUNTRY_FLAG",
        rule=(
            f"TAX_RESIDENCY_COUNTRY in {_country_list(SANCTIONED_COUNTRIES)} || "
            f"INCORPORATION_JURISDICTION in {_country_list(SANCTIONED_COUNTRIES)}"
        ),
        source_attributes=("TAX_RESIDENCY_COUNTRY", "INCORPORATION_JURISDICTION"),
        description="Resident or incorporated in a sanctioned country",
        jurisdiction="GLOBAL",
        regulation="BSAAML",
    ),
    DerivedAttributeSpec(
        code="PEP_EXPOSURE_FLAG",
        rule="PEP_STATUS == true",
        source_attributes=("PEP_STATUS",),
        description="Politically exposed person involved",
        jurisdiction="GLOBAL",
        regulation="AMLD5",
    ),
    DerivedAttributeSpec(
        code="UBO_CONCENTRATION_SCORE",
        rule="max(UBO_PERCENT)",
        source_attributes=("UBO_PERCENT",),
        description="Largest beneficial ownership stake",
        jurisdiction="GLOBAL",
        regulation="AMLD5",
    ),
    DerivedAttributeSpec(
        code="COMPLEX_STRUCTURE_FLAG",
        rule="len(UBO_NAME) > 3",
        source_attributes=("UBO_NAME",),
        description="More than three beneficial owners",
        jurisdiction="GLOBAL",
        regulation="AMLD5",
    ),
    # Must come after the flags it reads
    DerivedAttributeSpec(
        code="OVERALL_RISK_FLAG",
        rule=(
            "HIGH_RISK_JURISDICTION_FLAG || SANCTIONED_COUNTRY_FLAG || "
            "PEP_EXPOSURE_FLAG || COMPLEX_STRUCTURE_FLAG"
        ),
        source_attributes=(
            "HIGH_RISK_JURISDICTION_FLAG",
            "SANCTIONED_COUNTRY_FLAG",
            "PEP_EXPOSURE_FLAG",
            "COMPLEX_STRUCTURE_FLAG",
        ),
        description="Any standard risk flag raised",
        jurisdiction="GLOBAL",
        regulation="AMLD5",
    ),
)


def case_attributes(case: KycCase) -> dict[str, Any]:
    """Public attributes of a case, keyed by attribute code."""
    attrs: dict[str, Any] = {
        "CLIENT_BUSINESS_UNIT": case.client_business_unit,
        "POLICY_CODES": list(case.policies),
        "OBLIGATION_CODES": list(case.obligations),
        "UBO_NAME": [],
        "UBO_PERCENT": [],
        "CONTROLLER_NAME": [],
    }
    if case.ownership is not None:
        attrs["UBO_NAME"] = [o.name for o in case.ownership.beneficial_owners]
        attrs["UBO_PERCENT"] = [o.percent for o in case.ownership.beneficial_owners]
        attrs["CONTROLLER_NAME"] = [c.name for c in case.ownership.controllers]
    return attrs
