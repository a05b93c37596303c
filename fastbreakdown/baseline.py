"""
baseline.py.

Reference population statistics for break-down attribution: the average
prediction and conditional means with a subset of variables fixed.
"""

import threading
from collections.abc import Mapping
from typing import Any, Optional

import numpy as np
import pandas as pd

from .exceptions import EmptyPopulation, NonFiniteScore, SchemaMismatch
from .logging_config import logger
from .scorers import Batch, Scorer


class ReferenceBaseline:
    """
    Population used to estimate baseline and conditional predictions.

    Parameters
    ----------
    population : DataFrame or sequence of feature vectors
        Reference rows with the scorer's variables in schema order.
    scorer : Scorer
        Scoring adapter shared with the engine.
    n_samples : int, optional
        If given and smaller than the population, a random subsample of this
        size is drawn once and used for every estimate.
    random_state : int, optional
        Seed for the subsample.

    Raises:
    ------
    EmptyPopulation
        If ``population`` has no rows.
    SchemaMismatch
        If the population's columns differ from the scorer's schema.
    """

    def __init__(
        self,
        population: Batch,
        scorer: Scorer,
        n_samples: Optional[int] = None,
        random_state: Optional[int] = None,
    ):
        if len(population) == 0:
            raise EmptyPopulation("Reference population must contain at least one row")
        if n_samples is not None and n_samples < 1:
            raise ValueError(f"n_samples must be positive, got {n_samples}")

        self.scorer = scorer
        frame = scorer.to_frame(population, what="reference population")
        if n_samples is not None and n_samples < len(frame):
            frame = frame.sample(n=n_samples, random_state=random_state)
            logger.debug(f"Subsampled reference population to {n_samples} rows")
        self._population = frame.reset_index(drop=True).copy()

        self._average: Optional[float] = None
        self._average_lock = threading.Lock()

    @property
    def feature_names(self) -> list[str]:
        return self.scorer.feature_names

    @property
    def n_rows(self) -> int:
        return len(self._population)

    @property
    def population(self) -> pd.DataFrame:
        """Copy of the (possibly subsampled) reference rows."""
        return self._population.copy()

    def average_prediction(self) -> float:
        """Mean prediction over the population, computed once and cached."""
        if self._average is None:
            with self._average_lock:
                if self._average is None:
                    scores = self.scorer.predict(self._population)
                    self._average = self._finite_mean(scores, "average prediction")
        return self._average

    def conditional_mean(self, fixed: Mapping[str, Any]) -> float:
        """
        Mean prediction with the variables in ``fixed`` overwritten in every row.

        All other variables keep their original population values.
        """
        frame = self._fixed_frame(fixed)
        return self._finite_mean(self.scorer.predict(frame), f"conditional mean {dict(fixed)}")

    def conditional_means(
        self, fixed: Mapping[str, Any], candidates: Mapping[str, Any]
    ) -> dict[str, float]:
        """
        Evaluate several single-variable extensions of ``fixed`` in one scorer call.

        Returns, for every ``name -> value`` in ``candidates``, the value
        ``conditional_mean({**fixed, name: value})``.
        """
        if not candidates:
            return {}
        base = self._fixed_frame(fixed)
        self._check_names(candidates)

        frames = []
        for name, value in candidates.items():
            frame = base.copy()
            frame[name] = value
            frames.append(frame)
        stacked = pd.concat(frames, ignore_index=True)
        scores = self.scorer.predict(stacked).reshape(len(candidates), self.n_rows)

        return {
            name: self._finite_mean(np.ascontiguousarray(row), f"conditional mean with {name}")
            for name, row in zip(candidates, scores)
        }

    def _check_names(self, names) -> None:
        unexpected = [name for name in names if name not in self.feature_names]
        if unexpected:
            raise SchemaMismatch(
                f"Cannot fix variables outside the schema: {unexpected}", unexpected=unexpected
            )

    def _fixed_frame(self, fixed: Mapping[str, Any]) -> pd.DataFrame:
        self._check_names(fixed)
        frame = self._population.copy()
        for name, value in fixed.items():
            frame[name] = value
        return frame

    @staticmethod
    def _finite_mean(scores: np.ndarray, what: str) -> float:
        mean = float(np.mean(scores))
        if not np.isfinite(mean):
            raise NonFiniteScore(f"Scoring function returned a non-finite {what}: {mean}")
        return mean

    def __repr__(self) -> str:
        return f"ReferenceBaseline(n_rows={self.n_rows}, n_features={len(self.feature_names)})"


__all__ = ["ReferenceBaseline"]
