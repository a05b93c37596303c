"""Result records produced by the break-down engine and the batch orchestrator."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import numpy as np
import pandas as pd

RECORD_COLUMNS = [
    "observation_id",
    "variable_name",
    "variable_value",
    "contribution",
    "cumulative_prediction",
    "order_index",
]


@dataclass(frozen=True)
class ContributionRecord:
    """One (observation, variable) step of a break-down path."""

    observation_id: Any
    variable_name: str
    variable_value: Any
    contribution: float
    cumulative_prediction: float
    order_index: int

    def to_dict(self) -> dict[str, Any]:
        return {column: getattr(self, column) for column in RECORD_COLUMNS}


@dataclass(frozen=True)
class DecompositionResult:
    """
    Baseline plus ordered per-variable contributions for one observation.

    Attributes:
    ----------
    baseline : float
        Average prediction over the reference population.
    records : tuple of ContributionRecord
        Contributions in the order the variables were committed
        (``order_index`` ascending).
    prediction : float
        Model output for the full observation.
    observation_id : optional
        Identifier of the explained observation.
    """

    baseline: float
    records: tuple[ContributionRecord, ...]
    prediction: float
    observation_id: Any = None

    @property
    def contributions(self) -> dict[str, float]:
        """Variable name to contribution, in path order."""
        return {record.variable_name: record.contribution for record in self.records}

    @property
    def variable_order(self) -> list[str]:
        return [record.variable_name for record in self.records]

    @property
    def total(self) -> float:
        """Baseline plus the sum of all contributions."""
        return float(self.baseline + sum(record.contribution for record in self.records))

    def check_exactness(self, rtol: float = 1e-6) -> bool:
        """Whether baseline plus contributions reproduces the prediction within ``rtol``."""
        return bool(np.isclose(self.total, self.prediction, rtol=rtol, atol=rtol))

    def to_frame(self, include_baseline: bool = False) -> pd.DataFrame:
        """
        Return the break-down path as a DataFrame.

        Parameters
        ----------
        include_baseline : bool, default=False
            Frame the variable rows with an ``intercept`` row (the baseline)
            and a closing ``prediction`` row, as break-down tables are
            usually displayed.
        """
        rows = [record.to_dict() for record in self.records]
        if include_baseline:
            intercept = {
                "observation_id": self.observation_id,
                "variable_name": "intercept",
                "variable_value": None,
                "contribution": self.baseline,
                "cumulative_prediction": self.baseline,
                "order_index": 0,
            }
            closing = {
                "observation_id": self.observation_id,
                "variable_name": "prediction",
                "variable_value": None,
                "contribution": self.prediction,
                "cumulative_prediction": self.prediction,
                "order_index": len(self.records) + 1,
            }
            rows = [intercept, *rows, closing]
        frame = pd.DataFrame(rows, columns=RECORD_COLUMNS)
        # Mixed int and float values would otherwise be upcast to float
        frame["variable_value"] = pd.Series(
            [row["variable_value"] for row in rows], index=frame.index, dtype=object
        )
        return frame


@dataclass(frozen=True)
class Observation:
    """Feature vector with an identifier and an optional true label."""

    observation_id: Any
    features: Union[Mapping, pd.Series] = field(repr=False)
    label: Optional[Any] = None

    @classmethod
    def from_frame(
        cls,
        X: pd.DataFrame,  # pylint: disable=invalid-name
        y: Optional[Union[np.ndarray, pd.Series, list]] = None,
    ) -> list["Observation"]:
        """
        Build observations from the rows of ``X``.

        The row index becomes the identifier; ``y`` is aligned by position.
        Features are read column by column, so each value keeps its
        column's dtype.
        """
        if y is not None and len(y) != len(X):
            raise ValueError(
                f"X and y must have same number of samples. Got {len(X)} and {len(y)}"
            )
        labels = list(np.asarray(y)) if y is not None else [None] * len(X)
        rows = X.to_dict(orient="records")
        return [
            cls(observation_id=index, features=row, label=label)
            for index, row, label in zip(X.index, rows, labels)
        ]


__all__ = ["RECORD_COLUMNS", "ContributionRecord", "DecompositionResult", "Observation"]
