"""
FastBreakDown: break-down attribution for binary classifiers.

This package decomposes individual predicted probabilities into a population
baseline plus additive per-variable contributions, for one observation or for
many observations concurrently.

Features:
- BreakDownExplainer: session facade over any trained classifier
- BreakDown: greedy single-observation break-down engine
- BatchExplainer: concurrent batch explanations with isolated failures
- ReferenceBaseline: baseline and conditional-mean estimates
- Scorer adapters: predict_proba, decision_function and plain callables
"""

from .baseline import ReferenceBaseline
from .batch import BatchExplainer, BatchResult, CancellationToken
from .breakdown import BreakDown
from .config import BreakDownSettings, get_settings
from .exceptions import (
    BreakDownError,
    EmptyPopulation,
    NonFiniteScore,
    SchemaMismatch,
    ScoringUnavailable,
)
from .explainer import BreakDownExplainer
from .records import ContributionRecord, DecompositionResult, Observation
from .scorers import (
    CallableScorer,
    DecisionFunctionScorer,
    ProbabilityScorer,
    Scorer,
    make_scorer,
)

__version__ = "0.1.0"

__all__ = [
    "BreakDownExplainer",
    "BreakDown",
    "BatchExplainer",
    "BatchResult",
    "CancellationToken",
    "ReferenceBaseline",
    "Scorer",
    "ProbabilityScorer",
    "DecisionFunctionScorer",
    "CallableScorer",
    "make_scorer",
    "ContributionRecord",
    "DecompositionResult",
    "Observation",
    "BreakDownSettings",
    "get_settings",
    "BreakDownError",
    "SchemaMismatch",
    "EmptyPopulation",
    "NonFiniteScore",
    "ScoringUnavailable",
]
