"""Structured KYC case state.

These dataclasses are what the amendment pipeline mutates. They are
reconstructed from a version's snapshot text by the DSL service and turned
back into text by it; ``to_dict``/``from_dict`` give the JSON wire form
used for that exchange.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from app.models.enums import CaseStatus
from kyc.errors import BindError


@dataclass
class FunctionMarker:
    """An action tag recorded on a case, e.g. DISCOVER-POLICIES."""

    action: str
    status: str = CaseStatus.PENDING.value


@dataclass
class KycToken:
    """Finalization token; any status other than "pending" is final."""

    status: str


@dataclass
class OwnerStake:
    """A legal or beneficial owner and the percentage held."""

    name: str
    percent: float


@dataclass
class RoleHolder:
    """A controller or operational role holder."""

    name: str
    role: str


@dataclass
class OwnershipStructure:
    """Legal and beneficial ownership plus control roles for the case entity."""

    entity: str
    legal_owners: list[OwnerStake] = field(default_factory=list)
    beneficial_owners: list[OwnerStake] = field(default_factory=list)
    controllers: list[RoleHolder] = field(default_factory=list)
    operational_roles: list[RoleHolder] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OwnershipStructure:
        return cls(
            entity=data.get("entity", ""),
            legal_owners=[OwnerStake(**o) for o in data.get("legal_owners", [])],
            beneficial_owners=[
                OwnerStake(**o) for o in data.get("beneficial_owners", [])
            ],
            controllers=[RoleHolder(**c) for c in data.get("controllers", [])],
            operational_roles=[
                RoleHolder(**r) for r in data.get("operational_roles", [])
            ],
        )


@dataclass
class KycCase:
    """A compliance case and everything amendments have added to it."""

    name: str
    nature: str = ""
    purpose: str = ""
    client_business_unit: str = ""
    policies: list[str] = field(default_factory=list)
    obligations: list[str] = field(default_factory=list)
    functions: list[FunctionMarker] = field(default_factory=list)
    ownership: OwnershipStructure | None = None
    token: KycToken | None = None
    status: str = CaseStatus.PENDING.value

    def has_function(self, *actions: str) -> bool:
        """True if any function marker carries one of the given actions."""
        return any(fn.action in actions for fn in self.functions)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KycCase:
        """Build a case from its wire form.

        Raises:
            BindError: If the payload is missing a name or has malformed
                nested entries.
        """
        name = data.get("name")
        if not name:
            raise BindError("case payload has no name")
        try:
            ownership = data.get("ownership")
            token = data.get("token")
            return cls(
                name=name,
                nature=data.get("nature") or "",
                purpose=data.get("purpose") or "",
                client_business_unit=data.get("client_business_unit") or "",
                policies=list(data.get("policies") or []),
                obligations=list(data.get("obligations") or []),
                functions=[FunctionMarker(**fn) for fn in data.get("functions") or []],
                ownership=OwnershipStructure.from_dict(ownership) if ownership else None,
                token=KycToken(**token) if token else None,
                status=data.get("status") or CaseStatus.PENDING.value,
            )
        except (TypeError, AttributeError) as e:
            raise BindError(f"malformed case payload: {e}", case_name=name) from e
