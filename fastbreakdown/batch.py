"""
batch.py.

Concurrent break-down explanations for many observations.

Observations are fanned out over a thread pool (``joblib.Parallel`` with the
threading backend). Each worker runs the full break-down for one observation
and hands back a complete result or an error; the calling thread collects the
outcomes in completion order and appends one row group per observation to the
combined table. Cancellation and the batch timeout are checked by workers
before an observation starts, never in the middle of one.
"""

import threading
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import joblib
import pandas as pd
from joblib import Parallel, delayed

from .breakdown import BreakDown
from .config import BreakDownSettings, get_settings
from .exceptions import BreakDownError, ScoringUnavailable
from .logging_config import logger
from .records import RECORD_COLUMNS, DecompositionResult, Observation

TABLE_COLUMNS = [
    "observation_id",
    "label",
    "prediction",
    "baseline",
    *RECORD_COLUMNS[1:],
]

# A ScoringUnavailable failure is retried this many times before it is reported
MAX_RETRIES = 1


class CancellationToken:
    """Flag shared between the caller and the workers of one batch."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class _Outcome:
    observation: Observation
    result: Optional[DecompositionResult] = None
    error: Optional[BaseException] = None
    status: str = "done"


@dataclass
class BatchResult:
    """
    Combined output of a batch explanation.

    Attributes:
    ----------
    table : pd.DataFrame
        One row per (observation, variable). Rows of one observation are
        contiguous and ordered by ``order_index``; observations appear in
        completion order.
    errors : list of (observation_id, exception)
        Observations that failed. They have no rows in ``table``.
    results : dict
        Observation identifier to its DecompositionResult.
    skipped : list
        Identifiers of observations never started because the batch was
        cancelled or timed out.
    cancelled : bool
        Whether the batch was cancelled by the caller.
    timed_out : bool
        Whether the batch timeout stopped remaining observations.
    """

    table: pd.DataFrame
    errors: list[tuple[Any, BaseException]] = field(default_factory=list)
    results: dict[Any, DecompositionResult] = field(default_factory=dict)
    skipped: list[Any] = field(default_factory=list)
    cancelled: bool = False
    timed_out: bool = False

    @property
    def n_completed(self) -> int:
        return len(self.results)

    @property
    def n_failed(self) -> int:
        return len(self.errors)

    def errors_frame(self) -> pd.DataFrame:
        """Errors as a DataFrame with observation_id, error_type and message."""
        return pd.DataFrame(
            [
                {
                    "observation_id": observation_id,
                    "error_type": type(error).__name__,
                    "message": str(error),
                }
                for observation_id, error in self.errors
            ],
            columns=["observation_id", "error_type", "message"],
        )

    def feature_importance(self) -> pd.DataFrame:
        """
        Aggregate contributions per variable across the batch.

        Returns a DataFrame sorted by mean absolute contribution, descending,
        with columns variable_name, mean_abs_contribution, mean_contribution
        and n_observations.
        """
        columns = ["variable_name", "mean_abs_contribution", "mean_contribution", "n_observations"]
        if self.table.empty:
            return pd.DataFrame(columns=columns)

        contributions = self.table[["variable_name", "contribution"]].copy()
        contributions["abs_contribution"] = contributions["contribution"].abs()
        summary = (
            contributions.groupby("variable_name", sort=False)
            .agg(
                mean_abs_contribution=("abs_contribution", "mean"),
                mean_contribution=("contribution", "mean"),
                n_observations=("contribution", "size"),
            )
            .reset_index()
        )
        return summary.sort_values("mean_abs_contribution", ascending=False).reset_index(drop=True)[
            columns
        ]


def resolve_concurrency(
    concurrency: Optional[int] = None, settings: Optional[BreakDownSettings] = None
) -> int:
    """
    Number of workers for a batch.

    Defaults to ``FASTBREAKDOWN_DEFAULT_CONCURRENCY`` or the number of physical
    cores, and is always capped by ``FASTBREAKDOWN_MAX_WORKERS``.
    """
    settings = settings or get_settings()
    if concurrency is None:
        concurrency = settings.default_concurrency or joblib.cpu_count(only_physical_cores=True)
    if concurrency < 1:
        raise ValueError(f"concurrency must be a positive integer, got {concurrency}")
    return min(concurrency, settings.max_workers)


class BatchExplainer:
    """
    Run :class:`BreakDown` for many observations on a worker pool.

    Parameters
    ----------
    engine : BreakDown
        Engine shared by all workers. It is only read during a batch.
    settings : BreakDownSettings, optional
        Pool cap, retry backoff and default timeout.
    """

    def __init__(self, engine: BreakDown, settings: Optional[BreakDownSettings] = None):
        self.engine = engine
        self.settings = settings or get_settings()

    def explain_batch(
        self,
        observations: Union[Sequence[Observation], Iterable[Observation]],
        concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None,
        order: Optional[Sequence[str]] = None,
    ) -> BatchResult:
        """
        Explain every observation and assemble the combined table.

        Parameters
        ----------
        observations : sequence of Observation
            Observations with unique identifiers.
        concurrency : int, optional
            Worker count, capped by the configured maximum.
        timeout : float, optional
            Seconds after which observations not yet started are skipped.
            Defaults to ``FASTBREAKDOWN_BATCH_TIMEOUT``.
        cancel_token : CancellationToken, optional
            Token the caller can cancel while the batch runs.
        order : sequence of str, optional
            Fixed variable order applied to every observation.

        Returns:
        -------
        BatchResult
            Per-observation failures are reported in ``errors``; this method
            does not raise for them.
        """
        observations = list(observations)
        ids = [observation.observation_id for observation in observations]
        if len(set(ids)) != len(ids):
            raise ValueError("Observation identifiers must be unique within a batch")
        if order is not None:
            order = self.engine.check_order(order)

        n_jobs = min(resolve_concurrency(concurrency, self.settings), max(len(observations), 1))
        timeout = timeout if timeout is not None else self.settings.batch_timeout
        deadline = time.monotonic() + timeout if timeout is not None else None
        token = cancel_token or CancellationToken()

        logger.info(f"Explaining {len(observations)} observations with {n_jobs} workers")

        groups: list[pd.DataFrame] = []
        errors: list[tuple[Any, BaseException]] = []
        results: dict[Any, DecompositionResult] = {}
        skipped: list[Any] = []
        timed_out = False

        if observations:
            with Parallel(
                n_jobs=n_jobs, backend="threading", return_as="generator_unordered"
            ) as parallel:
                outcomes = parallel(
                    delayed(self._explain_one)(observation, token, deadline, order)
                    for observation in observations
                )
                try:
                    # Outcomes are consumed here only, so appends are serialized
                    for outcome in outcomes:
                        observation_id = outcome.observation.observation_id
                        if outcome.status != "done":
                            skipped.append(observation_id)
                            timed_out = timed_out or outcome.status == "timed_out"
                        elif outcome.error is not None:
                            errors.append((observation_id, outcome.error))
                        else:
                            results[observation_id] = outcome.result
                            groups.append(self._rows(outcome.observation, outcome.result))
                finally:
                    outcomes.close()

        table = (
            pd.concat(groups, ignore_index=True)
            if groups
            else pd.DataFrame(columns=TABLE_COLUMNS)
        )
        batch = BatchResult(
            table=table,
            errors=errors,
            results=results,
            skipped=skipped,
            cancelled=token.cancelled,
            timed_out=timed_out,
        )
        logger.info(
            f"Batch finished: {batch.n_completed} completed, {batch.n_failed} failed, "
            f"{len(skipped)} skipped"
            + (" (cancelled)" if batch.cancelled else "")
            + (" (timed out)" if batch.timed_out else "")
        )
        return batch

    def _explain_one(
        self,
        observation: Observation,
        token: CancellationToken,
        deadline: Optional[float],
        order: Optional[list[str]],
    ) -> _Outcome:
        if token.cancelled:
            return _Outcome(observation, status="cancelled")
        if deadline is not None and time.monotonic() >= deadline:
            return _Outcome(observation, status="timed_out")

        attempt = 0
        while True:
            try:
                result = self.engine.explain(
                    observation.features,
                    observation_id=observation.observation_id,
                    order=order,
                )
                return _Outcome(observation, result=result)
            except ScoringUnavailable as e:
                if attempt >= MAX_RETRIES:
                    logger.warning(f"Observation {observation.observation_id!r} failed: {e}")
                    return _Outcome(observation, error=e)
                attempt += 1
                logger.warning(
                    f"Scoring unavailable for observation {observation.observation_id!r}, "
                    f"retrying in {self.settings.retry_backoff * attempt:.2f}s"
                )
                time.sleep(self.settings.retry_backoff * attempt)
            except BreakDownError as e:
                logger.warning(f"Observation {observation.observation_id!r} failed: {e}")
                return _Outcome(observation, error=e)
            except Exception as e:  # pylint: disable=broad-except
                logger.opt(exception=e).error(
                    f"Unexpected error for observation {observation.observation_id!r}: {e}"
                )
                return _Outcome(observation, error=e)

    @staticmethod
    def _rows(observation: Observation, result: DecompositionResult) -> pd.DataFrame:
        frame = result.to_frame()
        frame.insert(1, "label", observation.label)
        frame.insert(2, "prediction", result.prediction)
        frame.insert(3, "baseline", result.baseline)
        return frame[TABLE_COLUMNS]


__all__ = [
    "TABLE_COLUMNS",
    "BatchExplainer",
    "BatchResult",
    "CancellationToken",
    "resolve_concurrency",
]
