"""Derived attribute rules: compile, evaluate and explain."""

from kyc.lineage.evaluator import (
    DerivedAttributeSpec,
    EvaluationResult,
    Evaluator,
    explain_result,
)

__all__ = [
    "DerivedAttributeSpec",
    "EvaluationResult",
    "Evaluator",
    "explain_result",
]
