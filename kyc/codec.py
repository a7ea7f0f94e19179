"""The parse / serialize / validate collaborator used by the amendment pipeline.

The textual grammar is owned by the DSL service; the pipeline only needs
these three calls. ``kyc.dsl_client.DslServiceClient`` is the production
implementation.
"""

from __future__ import annotations

from typing import Protocol

from kyc.domain import KycCase


class CaseCodec(Protocol):
    """Turns snapshot text into cases and back, and validates cases."""

    async def parse(self, text: str) -> list[KycCase]:
        """Parse snapshot text into structured cases.

        Raises:
            ParseError: If the text is not valid DSL.
            BindError: If the parsed text cannot be bound into cases.
        """
        ...

    async def serialize(self, cases: list[KycCase]) -> str:
        """Render cases back into snapshot text.

        Raises:
            ParseError: If the service cannot render the cases.
        """
        ...

    async def validate(self, case: KycCase, schema_ref: str) -> None:
        """Check a case against the named schema.

        Raises:
            ValidationError: If the case is rejected.
        """
        ...
