"""
breakdown.py.

Break-down attribution of a single prediction.

The predicted probability of one observation is decomposed into the
population baseline plus one additive contribution per variable. Variables
are committed greedily: at each step the variable whose fixation moves the
expected prediction the most is added next. Because every contribution is
the difference between two consecutive conditional means, the contributions
telescope and sum to the prediction.
"""

from collections.abc import Sequence
from typing import Any, Optional

import numpy as np

from .baseline import ReferenceBaseline
from .config import get_settings
from .exceptions import NonFiniteScore
from .logging_config import logger
from .records import ContributionRecord, DecompositionResult


class BreakDown:
    """
    Greedy break-down explainer over a reference baseline.

    Parameters
    ----------
    baseline : ReferenceBaseline
        Shared, read-only reference population and scorer.
    rtol : float, optional
        Tolerance for the exactness check. Defaults to ``FASTBREAKDOWN_RTOL``.

    Examples:
    --------
    >>> scorer = make_scorer(model, feature_names)
    >>> engine = BreakDown(ReferenceBaseline(X_train, scorer))
    >>> result = engine.explain(X_test.iloc[0])
    >>> result.baseline + sum(result.contributions.values())  # == result.prediction
    """

    def __init__(self, baseline: ReferenceBaseline, rtol: Optional[float] = None):
        self.baseline = baseline
        self.rtol = rtol if rtol is not None else get_settings().rtol

    @property
    def scorer(self):
        return self.baseline.scorer

    @property
    def feature_names(self) -> list[str]:
        return self.baseline.feature_names

    def check_order(self, order: Sequence[str]) -> list[str]:
        """Validate that ``order`` is a permutation of the schema variables."""
        order = list(order)
        if sorted(order) != sorted(self.feature_names) or len(set(order)) != len(order):
            raise ValueError(
                f"order must be a permutation of the schema variables {self.feature_names}, "
                f"got {order}"
            )
        return order

    def explain(
        self,
        x: Any,
        observation_id: Any = None,
        order: Optional[Sequence[str]] = None,
    ) -> DecompositionResult:
        """
        Decompose the prediction for ``x``.

        Parameters
        ----------
        x : mapping, Series, 1-D array or one-row DataFrame
            Feature vector with the schema's variables in schema order.
        observation_id : optional
            Identifier copied onto every contribution record.
        order : sequence of str, optional
            Fixed variable order. When given, the greedy search is skipped.

        Returns:
        -------
        DecompositionResult
            Baseline plus one record per variable in commit order.

        Raises:
        ------
        SchemaMismatch
            If ``x`` does not match the schema.
        NonFiniteScore
            If any prediction or conditional mean is NaN or infinite.
        """
        features = self.scorer.validate_vector(x)
        if order is not None:
            order = self.check_order(order)

        prediction = float(self.scorer.predict(features)[0])
        if not np.isfinite(prediction):
            raise NonFiniteScore(f"Scoring function returned {prediction} for the observation")

        baseline = self.baseline.average_prediction()
        fixed: dict[str, Any] = {}
        current = baseline
        remaining = list(self.feature_names)
        records = []

        for step in range(1, len(self.feature_names) + 1):
            if order is None:
                means = self.baseline.conditional_means(
                    fixed, {name: features[name] for name in remaining}
                )
                # max() keeps the first maximum, remaining is in schema order
                chosen = max(remaining, key=lambda name: abs(means[name] - current))
                mean = means[chosen]
            else:
                chosen = order[step - 1]
                mean = self.baseline.conditional_mean({**fixed, chosen: features[chosen]})

            records.append(
                ContributionRecord(
                    observation_id=observation_id,
                    variable_name=chosen,
                    variable_value=features[chosen],
                    contribution=mean - current,
                    cumulative_prediction=mean,
                    order_index=step,
                )
            )
            logger.debug(
                f"Step {step}: {chosen}={features[chosen]!r} contributes {mean - current:+.6f}"
            )
            fixed[chosen] = features[chosen]
            remaining.remove(chosen)
            current = mean

        result = DecompositionResult(
            baseline=baseline,
            records=tuple(records),
            prediction=prediction,
            observation_id=observation_id,
        )
        if not result.check_exactness(self.rtol):
            logger.warning(
                f"Break-down for observation {observation_id!r} drifts from the prediction: "
                f"{result.total:.8f} vs {prediction:.8f}. Is the scoring function deterministic?"
            )
        return result


__all__ = ["BreakDown"]
