"""Mutation library: the named changes an amendment can make to a case.

Each mutation is a small tagged action dispatched by ``apply_action``. The
actions append function markers (always with status "pending") and domain
data; none of them deduplicate, so applying the same action twice appends
everything twice.

Finalization couples three token outcomes (approved, declined, review) to a
single overall case status of "complete".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import ClassVar

from app.models.enums import CaseStatus, TokenStatus
from kyc.domain import (
    FunctionMarker,
    KycCase,
    KycToken,
    OwnershipStructure,
    OwnerStake,
    RoleHolder,
)
from kyc.lifecycle import (
    ASSESS_RISK,
    BUILD_OWNERSHIP_TREE,
    DISCOVER_POLICIES,
    REGULATOR_NOTIFY,
    SOLICIT_DOCUMENTS,
    VERIFY_OWNERSHIP,
)

logger = logging.getLogger(__name__)

DISCOVERED_POLICIES = ("KYCPOL-UK-2025", "KYCPOL-EU-2025", "AML-GLOBAL-BASE")
SOLICITED_OBLIGATIONS = ("OBL-W8BEN-E", "OBL-UBO-DECLARATION", "OBL-PROOF-OF-ADDRESS")

# Sample ownership graph added by ownership discovery
SAMPLE_LEGAL_OWNERS = (("PARENT-HOLDINGS-LTD", 60.0), ("MINORITY-INVESTOR-LLC", 40.0))
SAMPLE_BENEFICIAL_OWNERS = (("JANE-DOE", 35.0), ("JOHN-SMITH", 25.0))
SAMPLE_CONTROLLERS = (("ALICE-CHEN", "Director"),)
SAMPLE_OPERATIONAL_ROLES = (("BOB-KUMAR", "Compliance Officer"),)

FINAL_TOKEN_STATUSES = frozenset(
    {TokenStatus.APPROVED.value, TokenStatus.DECLINED.value, TokenStatus.REVIEW.value}
)


# =============================================================================
# Actions
# =============================================================================


@dataclass(frozen=True)
class PolicyDiscovery:
    step_label: ClassVar[str] = "policy-discovery"
    description: ClassVar[str] = "Add policy discovery function and policies"


@dataclass(frozen=True)
class DocumentSolicitation:
    step_label: ClassVar[str] = "document-solicitation"
    description: ClassVar[str] = "Add document solicitation and obligations"


@dataclass(frozen=True)
class OwnershipDiscovery:
    step_label: ClassVar[str] = "ownership-discovery"
    description: ClassVar[str] = "Add ownership structure and control hierarchy"


@dataclass(frozen=True)
class RiskAssessment:
    step_label: ClassVar[str] = "risk-assessment"
    description: ClassVar[str] = "Add risk assessment function"


@dataclass(frozen=True)
class RegulatorNotify:
    step_label: ClassVar[str] = "regulator-notify"
    description: ClassVar[str] = "Add regulator notification"


@dataclass(frozen=True)
class Finalize:
    """Set the finalization token to a terminal status."""

    status: str

    def __post_init__(self) -> None:
        if self.status not in FINAL_TOKEN_STATUSES:
            raise ValueError(
                f"Unknown finalization status: {self.status!r} "
                f"(expected one of {sorted(FINAL_TOKEN_STATUSES)})"
            )

    @property
    def step_label(self) -> str:
        return _FINALIZE_STEPS[self.status]

    @property
    def description(self) -> str:
        if self.status == TokenStatus.REVIEW.value:
            return "Set case to review status"
        return f"Finalize case as {self.status}"


Action = (
    PolicyDiscovery
    | DocumentSolicitation
    | OwnershipDiscovery
    | RiskAssessment
    | RegulatorNotify
    | Finalize
)

_FINALIZE_STEPS = {
    TokenStatus.APPROVED.value: "approve",
    TokenStatus.DECLINED.value: "decline",
    TokenStatus.REVIEW.value: "review",
}


# =============================================================================
# Dispatch
# =============================================================================


def _append_markers(case: KycCase, *actions: str) -> None:
    for action in actions:
        case.functions.append(FunctionMarker(action=action, status=CaseStatus.PENDING.value))


def _discover_policies(case: KycCase) -> None:
    _append_markers(case, DISCOVER_POLICIES)
    case.policies.extend(DISCOVERED_POLICIES)


def _solicit_documents(case: KycCase) -> None:
    _append_markers(case, SOLICIT_DOCUMENTS)
    case.obligations.extend(SOLICITED_OBLIGATIONS)


def _discover_ownership(case: KycCase) -> None:
    _append_markers(case, BUILD_OWNERSHIP_TREE, VERIFY_OWNERSHIP)
    if case.ownership is None:
        case.ownership = OwnershipStructure(
            entity=case.client_business_unit or case.name
        )
    ownership = case.ownership
    ownership.legal_owners.extend(OwnerStake(n, p) for n, p in SAMPLE_LEGAL_OWNERS)
    ownership.beneficial_owners.extend(
        OwnerStake(n, p) for n, p in SAMPLE_BENEFICIAL_OWNERS
    )
    ownership.controllers.extend(RoleHolder(n, r) for n, r in SAMPLE_CONTROLLERS)
    ownership.operational_roles.extend(
        RoleHolder(n, r) for n, r in SAMPLE_OPERATIONAL_ROLES
    )


def _finalize(case: KycCase, status: str) -> None:
    if case.token is None:
        case.token = KycToken(status=status)
    else:
        case.token.status = status
    # Every terminal token status completes the case, including "declined"
    case.status = CaseStatus.COMPLETE.value


def apply_action(case: KycCase, action: Action) -> KycCase:
    """Apply a tagged action to ``case`` in place and return it."""
    match action:
        case PolicyDiscovery():
            _discover_policies(case)
        case DocumentSolicitation():
            _solicit_documents(case)
        case OwnershipDiscovery():
            _discover_ownership(case)
        case RiskAssessment():
            _append_markers(case, ASSESS_RISK)
        case RegulatorNotify():
            _append_markers(case, REGULATOR_NOTIFY)
        case Finalize(status=status):
            _finalize(case, status)
        case _:
            raise TypeError(f"Unknown action: {action!r}")
    logger.debug("Applied %s to case %s", action.step_label, case.name)
    return case


# =============================================================================
# Named helpers
# =============================================================================


def add_policy_discovery(case: KycCase) -> KycCase:
    return apply_action(case, PolicyDiscovery())


def add_document_solicitation(case: KycCase) -> KycCase:
    return apply_action(case, DocumentSolicitation())


def add_ownership_discovery(case: KycCase) -> KycCase:
    return apply_action(case, OwnershipDiscovery())


def add_risk_assessment(case: KycCase) -> KycCase:
    return apply_action(case, RiskAssessment())


def add_regulator_notify(case: KycCase) -> KycCase:
    return apply_action(case, RegulatorNotify())


def approve_case(case: KycCase) -> KycCase:
    return apply_action(case, Finalize(TokenStatus.APPROVED.value))


def decline_case(case: KycCase) -> KycCase:
    return apply_action(case, Finalize(TokenStatus.DECLINED.value))


def set_case_to_review(case: KycCase) -> KycCase:
    return apply_action(case, Finalize(TokenStatus.REVIEW.value))


ACTIONS_BY_STEP: dict[str, Action] = {
    action.step_label: action
    for action in (
        PolicyDiscovery(),
        DocumentSolicitation(),
        OwnershipDiscovery(),
        RiskAssessment(),
        RegulatorNotify(),
        Finalize(TokenStatus.APPROVED.value),
        Finalize(TokenStatus.DECLINED.value),
        Finalize(TokenStatus.REVIEW.value),
    )
}


def action_for_step(step_label: str) -> Action:
    """Resolve a named amendment step to its action.

    Raises:
        ValueError: If the step name is not known.
    """
    action = ACTIONS_BY_STEP.get(step_label)
    if action is None:
        raise ValueError(
            f"Unknown amendment step: {step_label!r} "
            f"(expected one of {', '.join(ACTIONS_BY_STEP)})"
        )
    return action

