"""
explainer.py.

Session-level break-down explainer.

Wires a scoring adapter, a reference baseline, the break-down engine and the
batch orchestrator together once, so individual and batch explanations share
the same cached baseline.
"""

from collections.abc import Sequence
from typing import Any, Optional, Union

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator

from .baseline import ReferenceBaseline
from .batch import BatchExplainer, BatchResult, CancellationToken
from .breakdown import BreakDown
from .config import BreakDownSettings, get_settings
from .records import DecompositionResult, Observation
from .scorers import infer_feature_names, make_scorer


class BreakDownExplainer(BaseEstimator):
    """
    Break-down explainer for binary classifiers.

    Parameters
    ----------
    model : estimator, Scorer or callable
        Trained classifier. Anything with ``predict_proba`` or
        ``decision_function`` is supported, as is a function mapping a
        DataFrame to positive-class probabilities.
    population : DataFrame or sequence of feature vectors
        Reference population for the baseline, typically the training data.
    feature_names : list of str, optional
        Variable order. If None, inferred from ``model.feature_names_in_`` or
        the population's columns.
    n_samples : int, optional
        Subsample the population to this many rows.
    random_state : int, optional
        Seed for the subsample.
    positive_class : optional
        Label of the positive class for ``predict_proba`` models.
    concurrency : int, optional
        Default worker count for :meth:`explain_batch`.
    settings : BreakDownSettings, optional
        Overrides the environment-derived settings.

    Attributes:
    ----------
    scorer_ : Scorer
        Adapter around ``model``.
    baseline_ : ReferenceBaseline
        Reference population statistics.
    engine_ : BreakDown
        Single-observation engine.
    feature_names_ : list of str
        Variable order used throughout the session.
    is_fitted_ : bool
        Whether the explainer is ready.
    """

    # pylint: disable=invalid-name
    def __init__(
        self,
        model,
        population: Union[pd.DataFrame, np.ndarray, Sequence],
        feature_names: Optional[list[str]] = None,
        n_samples: Optional[int] = None,
        random_state: Optional[int] = None,
        positive_class: Any = None,
        concurrency: Optional[int] = None,
        settings: Optional[BreakDownSettings] = None,
    ):
        self.model = model
        self.population = population
        self.feature_names = feature_names
        self.n_samples = n_samples
        self.random_state = random_state
        self.positive_class = positive_class
        self.concurrency = concurrency
        self.settings = settings

        self.is_fitted_ = False
        self._fit()

    def _fit(self):
        settings = self.settings or get_settings()
        feature_names = self.feature_names
        if feature_names is None:
            feature_names = getattr(self.model, "feature_names", None)
        if feature_names is None:
            feature_names = infer_feature_names(self.model, self.population)

        self.scorer_ = make_scorer(self.model, feature_names, positive_class=self.positive_class)
        self.feature_names_ = list(self.scorer_.feature_names)
        self.baseline_ = ReferenceBaseline(
            self.population,
            self.scorer_,
            n_samples=self.n_samples,
            random_state=self.random_state,
        )
        self.engine_ = BreakDown(self.baseline_, rtol=settings.rtol)
        self._batch = BatchExplainer(self.engine_, settings=settings)
        self.is_fitted_ = True
        return self

    def average_prediction(self) -> float:
        """Baseline prediction over the reference population."""
        return self.baseline_.average_prediction()

    def predict(self, X) -> np.ndarray:  # pylint: disable=invalid-name
        """Positive-class probabilities from the wrapped model."""
        return self.scorer_.predict(X)

    def explain(
        self,
        x: Union[pd.Series, pd.DataFrame, np.ndarray, dict],
        sample_idx: Optional[int] = None,
        observation_id: Any = None,
        order: Optional[Sequence[str]] = None,
    ) -> DecompositionResult:
        """
        Explain one prediction.

        This method handles two usage patterns:
        1. explain(sample) - explain a single feature vector
        2. explain(dataset, sample_idx) - explain one row of a dataset

        Parameters
        ----------
        x : Series, dict, 1-D array, or DataFrame
            Feature vector, or dataset when ``sample_idx`` is given.
        sample_idx : int, optional
            Position of the row to explain in ``x``.
        observation_id : optional
            Identifier for the records. Defaults to the row's index label.
        order : sequence of str, optional
            Fixed variable order instead of the greedy search.

        Raises:
        ------
        SchemaMismatch, NonFiniteScore, ScoringUnavailable
            Single explanations fail outright on any error.
        """
        if sample_idx is not None:
            if isinstance(x, pd.DataFrame):
                if observation_id is None:
                    observation_id = x.index[sample_idx]
                x = x.iloc[sample_idx]
            else:
                if observation_id is None:
                    observation_id = sample_idx
                x = np.asarray(x)[sample_idx]
        elif isinstance(x, pd.DataFrame) and len(x) > 1:
            raise ValueError(
                f"explain() received DataFrame with {len(x)} rows but no sample_idx. "
                f"Use explain(dataset, sample_idx=i) or explain_batch(dataset)"
            )
        elif isinstance(x, pd.DataFrame) and len(x) == 1 and observation_id is None:
            observation_id = x.index[0]
        elif isinstance(x, pd.Series) and observation_id is None:
            observation_id = x.name

        return self.engine_.explain(x, observation_id=observation_id, order=order)

    def explain_batch(
        self,
        X: Union[pd.DataFrame, Sequence[Observation]],  # pylint: disable=invalid-name
        y: Optional[Union[np.ndarray, pd.Series, list]] = None,
        concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None,
        order: Optional[Sequence[str]] = None,
    ) -> BatchResult:
        """
        Explain many observations concurrently.

        ``X`` is either a DataFrame (row index used as identifiers, ``y`` as
        labels) or a sequence of :class:`Observation`. See
        :meth:`BatchExplainer.explain_batch` for the remaining parameters.
        """
        if isinstance(X, pd.DataFrame):
            observations = Observation.from_frame(X, y)
        else:
            if y is not None:
                raise ValueError("y is only supported when X is a DataFrame")
            observations = list(X)
        return self._batch.explain_batch(
            observations,
            concurrency=concurrency if concurrency is not None else self.concurrency,
            timeout=timeout,
            cancel_token=cancel_token,
            order=order,
        )

    def summary(self) -> str:
        """Return a summary of the explainer."""
        if not self.is_fitted_:
            return "BreakDownExplainer (not fitted)"

        features_str = ", ".join(self.feature_names_)
        return f"""
            Break-Down Explainer ({type(self.scorer_).__name__})
            ==========================================
            Features: {len(self.feature_names_)} ({features_str})
            Reference rows: {self.baseline_.n_rows}
            Average prediction: {self.average_prediction():.5f}"""


__all__ = ["BreakDownExplainer"]
