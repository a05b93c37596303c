"""
scorers.py.

Uniform "probability of the positive class" interface over trained models.

Every adapter fixes the ordered list of variable names at construction and
refuses batches whose keys or order differ from it. Model families are
covered by small subclasses; callers only ever use :meth:`Scorer.predict`.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, Callable, Optional, Union

import numpy as np
import pandas as pd
from scipy.special import expit  # pylint: disable=no-name-in-module

from .exceptions import BreakDownError, SchemaMismatch, ScoringUnavailable

FeatureVector = Union[Mapping, pd.Series]
Batch = Union[pd.DataFrame, FeatureVector, Sequence[FeatureVector], np.ndarray]


class Scorer(ABC):
    """
    Base class for scoring adapters.

    Parameters
    ----------
    feature_names : sequence of str
        Ordered variable names the model was trained on.

    Notes:
    -----
    Subclasses implement :meth:`_score`, which receives a DataFrame whose
    columns are exactly ``feature_names`` in order, and must be free of side
    effects so that concurrent calls are safe.
    """

    def __init__(self, feature_names: Sequence[str]):
        feature_names = list(feature_names)
        if not feature_names:
            raise ValueError("feature_names must contain at least one variable")
        if len(set(feature_names)) != len(feature_names):
            raise ValueError(f"feature_names contains duplicates: {feature_names}")
        self.feature_names: list[str] = feature_names

    @abstractmethod
    def _score(self, frame: pd.DataFrame) -> Any:
        """Return positive-class probabilities for every row of ``frame``."""

    def validate_vector(self, x: Any, what: str = "observation") -> dict[str, Any]:
        """
        Check a single feature vector against the schema.

        Returns the vector as a dict in schema order.
        """
        if isinstance(x, pd.DataFrame):
            if len(x) != 1:
                raise SchemaMismatch(
                    f"Expected a single {what}, got a DataFrame with {len(x)} rows"
                )
            x = x.iloc[0]

        if isinstance(x, pd.Series):
            items = list(x.items())
        elif isinstance(x, Mapping):
            items = list(x.items())
        elif isinstance(x, np.ndarray) and x.ndim == 1:
            if len(x) != len(self.feature_names):
                raise SchemaMismatch(
                    f"{what} has {len(x)} values but the schema has "
                    f"{len(self.feature_names)} variables"
                )
            items = list(zip(self.feature_names, x))
        else:
            raise SchemaMismatch(
                f"Cannot read variable names from {what} of type {type(x).__name__}"
            )

        names = [name for name, _ in items]
        if names != self.feature_names:
            raise SchemaMismatch.compare(self.feature_names, names, what=what)
        return {name: value.item() if hasattr(value, "item") else value for name, value in items}

    def to_frame(self, batch: Batch, what: str = "batch") -> pd.DataFrame:
        """Convert a batch to a DataFrame in schema order, validating keys and order."""
        if isinstance(batch, pd.DataFrame):
            columns = list(batch.columns)
            if columns != self.feature_names:
                raise SchemaMismatch.compare(self.feature_names, columns, what=what)
            return batch
        if isinstance(batch, (pd.Series, Mapping)):
            return pd.DataFrame([self.validate_vector(batch, what)], columns=self.feature_names)
        if isinstance(batch, np.ndarray):
            if batch.ndim == 1:
                return pd.DataFrame([self.validate_vector(batch, what)], columns=self.feature_names)
            if batch.ndim != 2 or batch.shape[1] != len(self.feature_names):
                raise SchemaMismatch(
                    f"{what} has shape {batch.shape}, expected "
                    f"(n, {len(self.feature_names)})"
                )
            return pd.DataFrame(batch, columns=self.feature_names)

        rows = [self.validate_vector(row, what) for row in batch]
        return pd.DataFrame(rows, columns=self.feature_names)

    def predict(self, batch: Batch) -> np.ndarray:
        """
        Score a batch of feature vectors.

        Parameters
        ----------
        batch : DataFrame, mapping, Series, ndarray or sequence of mappings
            Feature vectors with the schema's variables in schema order. A
            single mapping or Series is scored as a batch of one.

        Returns:
        -------
        np.ndarray
            One probability per input row, in input order.

        Raises:
        ------
        SchemaMismatch
            If any vector's variables or their order differ from the schema.
        ScoringUnavailable
            If the underlying model raises, or its output is not one float
            per row.
        """
        frame = self.to_frame(batch)
        if len(frame) == 0:
            return np.empty(0, dtype=float)

        try:
            scores = np.asarray(self._score(frame), dtype=float).reshape(-1)
        except BreakDownError:
            raise
        except Exception as e:
            raise ScoringUnavailable(
                f"{type(self).__name__} failed to score {len(frame)} rows: {e}"
            ) from e

        if len(scores) != len(frame):
            raise ScoringUnavailable(
                f"{type(self).__name__} returned {len(scores)} scores for {len(frame)} rows"
            )
        return scores

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n_features={len(self.feature_names)})"


def _model_input(model, frame: pd.DataFrame) -> Union[pd.DataFrame, np.ndarray]:
    """Pass named columns only to estimators that were fitted with names."""
    if hasattr(model, "feature_names_in_"):
        return frame
    return frame.to_numpy()


class ProbabilityScorer(Scorer):
    """
    Adapter for estimators exposing ``predict_proba``.

    Parameters
    ----------
    model : estimator
        Fitted classifier with ``predict_proba``.
    feature_names : sequence of str
        Ordered variable names.
    positive_class : optional
        Label of the positive class. Defaults to the last entry of
        ``model.classes_`` (column 1 for binary models).
    """

    def __init__(self, model, feature_names: Sequence[str], positive_class: Any = None):
        super().__init__(feature_names)
        self.model = model
        self.positive_class = positive_class
        self._column = self._resolve_column()

    def _resolve_column(self) -> int:
        classes = getattr(self.model, "classes_", None)
        if self.positive_class is None:
            return len(classes) - 1 if classes is not None else 1
        if classes is None:
            raise ValueError(
                "positive_class was given but the model has no classes_ attribute"
            )
        classes = list(classes)
        if self.positive_class not in classes:
            raise ValueError(f"positive_class {self.positive_class!r} not found in {classes}")
        return classes.index(self.positive_class)

    def _score(self, frame: pd.DataFrame) -> np.ndarray:
        proba = np.asarray(self.model.predict_proba(_model_input(self.model, frame)))
        return proba[:, self._column]


class DecisionFunctionScorer(Scorer):
    """Adapter for margin classifiers; margins are mapped to [0, 1] with the logistic function."""

    def __init__(self, model, feature_names: Sequence[str]):
        super().__init__(feature_names)
        self.model = model

    def _score(self, frame: pd.DataFrame) -> np.ndarray:
        margin = np.asarray(self.model.decision_function(_model_input(self.model, frame)))
        return expit(margin)


class CallableScorer(Scorer):
    """Adapter for a plain function ``DataFrame -> probabilities``."""

    def __init__(self, func: Callable[[pd.DataFrame], Any], feature_names: Sequence[str]):
        super().__init__(feature_names)
        self.func = func

    def _score(self, frame: pd.DataFrame) -> Any:
        return self.func(frame)


def infer_feature_names(model, population: Any = None) -> list[str]:
    """Infer the variable order from a fitted estimator or a population DataFrame."""
    if hasattr(model, "feature_names_in_"):
        return list(model.feature_names_in_)
    if isinstance(population, pd.DataFrame):
        return list(population.columns)
    raise ValueError(
        "Cannot infer feature names. Pass feature_names explicitly or use a "
        "model fitted on a DataFrame."
    )


def make_scorer(
    model,
    feature_names: Optional[Sequence[str]] = None,
    positive_class: Any = None,
) -> Scorer:
    """
    Wrap ``model`` in the adapter matching its capabilities.

    ``predict_proba`` wins over ``decision_function``; any other callable is
    treated as a function returning probabilities. An existing :class:`Scorer`
    is returned unchanged.
    """
    if isinstance(model, Scorer):
        if feature_names is not None and list(feature_names) != model.feature_names:
            raise SchemaMismatch.compare(model.feature_names, list(feature_names), "feature_names")
        return model

    if feature_names is None:
        feature_names = infer_feature_names(model)

    if hasattr(model, "predict_proba"):
        return ProbabilityScorer(model, feature_names, positive_class=positive_class)
    if hasattr(model, "decision_function"):
        return DecisionFunctionScorer(model, feature_names)
    if callable(model):
        return CallableScorer(model, feature_names)
    raise ValueError(
        f"Unsupported model of type {type(model).__name__}: expected predict_proba, "
        "decision_function, or a callable returning probabilities."
    )


__all__ = [
    "Scorer",
    "ProbabilityScorer",
    "DecisionFunctionScorer",
    "CallableScorer",
    "infer_feature_names",
    "make_scorer",
]
