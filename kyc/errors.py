"""Error types raised by the amendment pipeline, lifecycle registry and evaluator.

Every error carries the identifier it concerns (case name, derived code or
phases) so callers can halt the specific operation without inspecting the
message text.
"""

from __future__ import annotations


class KycError(Exception):
    """Base class for all case ledger errors."""

    def __init__(
        self,
        message: str,
        *,
        case_name: str | None = None,
        step_label: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.case_name = case_name
        self.step_label = step_label
        self.stage = stage

    def __str__(self) -> str:
        prefix = []
        if self.case_name:
            prefix.append(f"case {self.case_name}")
        if self.step_label:
            prefix.append(f"step {self.step_label}")
        if self.stage:
            prefix.append(self.stage)
        if not prefix:
            return self.message
        return f"[{' / '.join(prefix)}] {self.message}"


class NotFoundError(KycError):
    """The requested case has no stored versions."""


class ParseError(KycError):
    """Snapshot text could not be parsed (or a case could not be serialized)."""


class BindError(KycError):
    """Parsed snapshot could not be reconstructed into exactly one case."""


class ValidationError(KycError):
    """A serialized case was rejected by the validator."""


class PersistenceError(KycError):
    """A write to or read from the version store failed."""


class ConcurrencyError(PersistenceError):
    """Another writer already took the version number this writer computed."""

    def __init__(self, message: str, *, version_number: int | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.version_number = version_number


class DuplicateCaseError(PersistenceError):
    """A case with this name already has stored versions."""


class StepTimeoutError(KycError):
    """An external call made by the pipeline exceeded its deadline."""


class InvalidTransitionError(KycError):
    """A phase transition is not allowed by the lifecycle registry."""

    def __init__(self, message: str, *, current: str | None = None, target: str | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.current = current
        self.target = target


class CompileError(KycError):
    """A derived attribute rule failed to compile."""

    def __init__(self, message: str, *, derived_code: str | None = None, rule: str | None = None) -> None:
        super().__init__(message)
        self.derived_code = derived_code
        self.rule = rule

    def __str__(self) -> str:
        if self.derived_code:
            return f"compile error for {self.derived_code}: {self.message}"
        return self.message


class EvaluationError(KycError):
    """A compiled rule failed while running against the environment."""
