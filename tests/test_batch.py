"""Tests for batch module."""

import threading

import numpy as np
import pandas as pd
import pytest
from joblib import Parallel

from fastbreakdown import (
    BatchExplainer,
    BatchResult,
    BreakDown,
    BreakDownSettings,
    CallableScorer,
    CancellationToken,
    Observation,
    ReferenceBaseline,
    SchemaMismatch,
    ScoringUnavailable,
    make_scorer,
)
from fastbreakdown.batch import TABLE_COLUMNS, resolve_concurrency


@pytest.fixture
def settings():
    return BreakDownSettings(retry_backoff=0.0, max_workers=8)


@pytest.fixture
def engine(credit_data, fitted_model):
    X, _ = credit_data
    return BreakDown(ReferenceBaseline(X, make_scorer(fitted_model), n_samples=100, random_state=0))


@pytest.fixture
def observations(credit_data):
    X, y = credit_data
    return Observation.from_frame(X.iloc[:10], y.iloc[:10])


class TestExplainBatch:
    """Combined table assembly."""

    def test_table_shape_and_columns(self, engine, observations, settings):
        batch = BatchExplainer(engine, settings).explain_batch(observations, concurrency=4)

        assert isinstance(batch, BatchResult)
        assert list(batch.table.columns) == TABLE_COLUMNS
        assert len(batch.table) == 10 * 10
        assert batch.n_completed == 10
        assert batch.errors == []
        assert not batch.cancelled
        assert not batch.timed_out
        assert batch.skipped == []

    def test_rows_grouped_and_ordered_per_observation(self, engine, observations, settings):
        batch = BatchExplainer(engine, settings).explain_batch(observations, concurrency=4)
        table = batch.table

        for observation_id, group in table.groupby("observation_id", sort=False):
            positions = group.index.to_numpy()
            # Each observation's rows are one contiguous block
            assert positions.max() - positions.min() + 1 == len(group)
            assert list(group["order_index"]) == list(range(1, 11))
            assert group["variable_name"].is_unique

    def test_matches_single_explanations(self, engine, observations, settings):
        batch = BatchExplainer(engine, settings).explain_batch(observations, concurrency=3)

        for observation in observations:
            single = engine.explain(observation.features, observation_id=observation.observation_id)
            result = batch.results[observation.observation_id]
            assert result.variable_order == single.variable_order
            assert result.contributions == pytest.approx(single.contributions, rel=1e-12)

    def test_labels_predictions_and_sums(self, engine, observations, settings):
        batch = BatchExplainer(engine, settings).explain_batch(observations, concurrency=2)
        table = batch.table

        for observation in observations:
            rows = table[table["observation_id"] == observation.observation_id]
            assert (rows["label"] == observation.label).all()
            prediction = rows["prediction"].iloc[0]
            total = rows["baseline"].iloc[0] + rows["contribution"].sum()
            assert total == pytest.approx(prediction, rel=1e-6)

    def test_sequential_pool(self, engine, observations, settings):
        batch = BatchExplainer(engine, settings).explain_batch(observations, concurrency=1)
        assert batch.n_completed == 10

    def test_empty_batch(self, engine, settings):
        batch = BatchExplainer(engine, settings).explain_batch([])

        assert batch.table.empty
        assert list(batch.table.columns) == TABLE_COLUMNS
        assert batch.n_completed == 0

    def test_duplicate_identifiers(self, engine, observations, settings):
        duplicated = observations[:2] + [observations[0]]
        with pytest.raises(ValueError, match="unique"):
            BatchExplainer(engine, settings).explain_batch(duplicated)

    def test_invalid_concurrency(self, engine, observations, settings):
        with pytest.raises(ValueError, match="positive integer"):
            BatchExplainer(engine, settings).explain_batch(observations, concurrency=0)

    def test_fixed_order(self, engine, observations, settings):
        order = [f"x{i}" for i in reversed(range(10))]
        batch = BatchExplainer(engine, settings).explain_batch(
            observations[:3], concurrency=2, order=order
        )

        for result in batch.results.values():
            assert result.variable_order == order

    def test_integer_values_keep_their_type(self, settings):
        frame = pd.DataFrame({"code": [1, 2, 3], "amount": [0.5, 1.5, 2.5]})
        scorer = CallableScorer(lambda f: f["code"] / 10 + f["amount"] / 100, ["code", "amount"])
        engine = BreakDown(ReferenceBaseline(frame, scorer))
        observations = Observation.from_frame(frame)

        assert observations[0].features == {"code": 1, "amount": 0.5}
        batch = BatchExplainer(engine, settings).explain_batch(observations, concurrency=2)

        table = batch.table
        codes = table.loc[table["variable_name"] == "code", "variable_value"].tolist()
        assert sorted(codes) == [1, 2, 3]
        assert all(isinstance(code, int) for code in codes)


class TestBatchIsolation:
    """Per-observation failures never abort the batch."""

    def test_one_malformed_observation(self, engine, observations, settings):
        features = dict(observations[4].features)
        del features["x7"]
        batch_input = list(observations)
        batch_input[4] = Observation(observation_id="broken", features=features, label=1)

        batch = BatchExplainer(engine, settings).explain_batch(batch_input, concurrency=4)

        assert batch.n_completed == 9
        assert len(batch.errors) == 1
        assert len(batch.table) == 90
        observation_id, error = batch.errors[0]
        assert observation_id == "broken"
        assert isinstance(error, SchemaMismatch)
        assert "broken" not in set(batch.table["observation_id"])

    def test_errors_frame(self, engine, observations, settings):
        bad = Observation(observation_id="bad", features={"x0": 1.0})
        batch = BatchExplainer(engine, settings).explain_batch([bad, *observations[:2]])
        frame = batch.errors_frame()

        assert list(frame.columns) == ["observation_id", "error_type", "message"]
        assert frame["observation_id"].tolist() == ["bad"]
        assert frame["error_type"].tolist() == ["SchemaMismatch"]

    def test_scoring_retried_once(self, settings):
        calls = {"n": 0}

        def flaky(frame):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("temporarily unavailable")
            return frame["v1"] / 2

        scorer = CallableScorer(flaky, ["v1"])
        engine = BreakDown(ReferenceBaseline(pd.DataFrame({"v1": [0, 1, 2]}), scorer))
        observation = Observation(observation_id=0, features={"v1": 2})

        batch = BatchExplainer(engine, settings).explain_batch([observation], concurrency=1)

        assert batch.errors == []
        assert batch.results[0].prediction == pytest.approx(1.0)

    def test_scoring_unavailable_reported_after_retry(self, settings):
        calls = {"n": 0}

        def broken(frame):
            calls["n"] += 1
            raise RuntimeError("model server down")

        scorer = CallableScorer(broken, ["v1"])
        engine = BreakDown(ReferenceBaseline(pd.DataFrame({"v1": [0, 1]}), scorer))
        observation = Observation(observation_id="a", features={"v1": 1})

        batch = BatchExplainer(engine, settings).explain_batch([observation], concurrency=1)

        assert calls["n"] == 2
        assert batch.n_completed == 0
        assert isinstance(batch.errors[0][1], ScoringUnavailable)

    def test_wrong_number_of_scores_isolated(self, settings):
        def score(frame):
            if (frame["v1"] == 99).any():
                return [0.5]
            return frame["v1"] / 100

        scorer = CallableScorer(score, ["v1"])
        engine = BreakDown(ReferenceBaseline(pd.DataFrame({"v1": [0, 1, 2]}), scorer))
        observations = [Observation(observation_id=i, features={"v1": i}) for i in range(5)]
        observations.append(Observation(observation_id="odd", features={"v1": 99}))

        batch = BatchExplainer(engine, settings).explain_batch(observations, concurrency=2)

        assert batch.n_completed == 5
        assert len(batch.table) == 5
        assert [observation_id for observation_id, _ in batch.errors] == ["odd"]
        assert isinstance(batch.errors[0][1], ScoringUnavailable)

    def test_multi_row_features_isolated(self, engine, observations, credit_data, settings):
        X, _ = credit_data
        two_rows = Observation(observation_id="two-rows", features=X.iloc[:2])

        batch = BatchExplainer(engine, settings).explain_batch(
            [two_rows, *observations[:3]], concurrency=2
        )

        assert batch.n_completed == 3
        assert len(batch.errors) == 1
        observation_id, error = batch.errors[0]
        assert observation_id == "two-rows"
        assert isinstance(error, SchemaMismatch)

    def test_unexpected_error_isolated(self, engine, observations, settings, monkeypatch):
        explain = engine.explain

        def explain_or_fail(x, observation_id=None, order=None):
            if observation_id == observations[1].observation_id:
                raise KeyError("lookup failed")
            return explain(x, observation_id=observation_id, order=order)

        monkeypatch.setattr(engine, "explain", explain_or_fail)
        batch = BatchExplainer(engine, settings).explain_batch(observations[:4], concurrency=2)

        assert batch.n_completed == 3
        assert len(batch.table) == 30
        observation_id, error = batch.errors[0]
        assert observation_id == observations[1].observation_id
        assert isinstance(error, KeyError)
        assert batch.errors_frame()["error_type"].tolist() == ["KeyError"]


class TestBatchCancellation:
    """Cancellation and timeout keep completed results."""

    def test_cancel_during_batch(self, settings):
        token = CancellationToken()
        first_call = threading.Event()

        def score(frame):
            if not first_call.is_set():
                first_call.set()
                token.cancel()
            return frame["v1"] / 10

        scorer = CallableScorer(score, ["v1", "v2"])
        engine = BreakDown(ReferenceBaseline(pd.DataFrame({"v1": [0, 5], "v2": [1, 2]}), scorer))
        observations = [
            Observation(observation_id=i, features={"v1": i, "v2": 0}) for i in range(6)
        ]

        batch = BatchExplainer(engine, settings).explain_batch(
            observations, concurrency=1, cancel_token=token
        )

        assert batch.cancelled
        assert batch.n_completed == 1
        assert len(batch.skipped) == 5
        # The completed observation is whole
        assert len(batch.table) == 2
        assert batch.results[batch.table["observation_id"].iloc[0]].check_exactness()

    def test_cancelled_before_start(self, engine, observations, settings):
        token = CancellationToken()
        token.cancel()

        batch = BatchExplainer(engine, settings).explain_batch(
            observations, concurrency=2, cancel_token=token
        )

        assert batch.cancelled
        assert batch.table.empty
        assert sorted(batch.skipped) == sorted(o.observation_id for o in observations)

    def test_timeout(self, engine, observations, settings):
        batch = BatchExplainer(engine, settings).explain_batch(
            observations, concurrency=2, timeout=1e-9
        )

        assert batch.timed_out
        assert not batch.cancelled
        assert batch.errors == []
        assert len(batch.skipped) + batch.n_completed == len(observations)
        assert len(batch.table) == 10 * batch.n_completed

    def test_default_timeout_from_settings(self, engine, observations):
        settings = BreakDownSettings(batch_timeout=1e-9)
        batch = BatchExplainer(engine, settings).explain_batch(observations, concurrency=1)
        assert batch.timed_out


class TestWorkerPool:
    """Pool lifetime."""

    @pytest.fixture
    def pool_exits(self, monkeypatch):
        exits = []

        class RecordingParallel(Parallel):
            def __exit__(self, exc_type, exc_value, traceback):
                exits.append(exc_type)
                return super().__exit__(exc_type, exc_value, traceback)

        monkeypatch.setattr("fastbreakdown.batch.Parallel", RecordingParallel)
        return exits

    def test_pool_released_after_batch(self, engine, observations, settings, pool_exits):
        BatchExplainer(engine, settings).explain_batch(observations[:3], concurrency=2)
        assert pool_exits == [None]

    def test_pool_released_when_assembly_fails(
        self, engine, observations, settings, pool_exits, monkeypatch
    ):
        def broken_rows(observation, result):
            raise RuntimeError("assembly failed")

        monkeypatch.setattr(BatchExplainer, "_rows", staticmethod(broken_rows))

        with pytest.raises(RuntimeError, match="assembly failed"):
            BatchExplainer(engine, settings).explain_batch(observations, concurrency=2)
        assert pool_exits == [RuntimeError]


class TestFeatureImportance:
    """Aggregation across the combined table."""

    def test_feature_importance(self, engine, observations, settings):
        batch = BatchExplainer(engine, settings).explain_batch(observations, concurrency=2)
        importance = batch.feature_importance()

        assert list(importance.columns) == [
            "variable_name",
            "mean_abs_contribution",
            "mean_contribution",
            "n_observations",
        ]
        assert len(importance) == 10
        assert (importance["n_observations"] == 10).all()
        assert importance["mean_abs_contribution"].is_monotonic_decreasing
        expected = batch.table.groupby("variable_name")["contribution"].apply(
            lambda s: np.abs(s).mean()
        )
        for _, row in importance.iterrows():
            assert row["mean_abs_contribution"] == pytest.approx(expected[row["variable_name"]])

    def test_feature_importance_empty(self, engine, settings):
        batch = BatchExplainer(engine, settings).explain_batch([])
        assert batch.feature_importance().empty


class TestResolveConcurrency:
    """Pool sizing."""

    def test_capped_by_max_workers(self):
        assert resolve_concurrency(64, BreakDownSettings(max_workers=4)) == 4

    def test_default_concurrency_setting(self):
        assert resolve_concurrency(None, BreakDownSettings(default_concurrency=3)) == 3

    def test_physical_cores_default(self):
        value = resolve_concurrency(None, BreakDownSettings(max_workers=1000))
        assert value >= 1

    def test_rejects_non_positive(self):
        with pytest.raises(ValueError):
            resolve_concurrency(-1, BreakDownSettings())
