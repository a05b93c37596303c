"""Pytest configuration and shared fixtures for fastbreakdown tests."""

import numpy as np
import pandas as pd
import pytest
from sklearn.datasets import make_classification
from sklearn.linear_model import LogisticRegression

from fastbreakdown.config import get_settings
from fastbreakdown.scorers import CallableScorer


@pytest.fixture(scope="session")
def credit_data():
    """Synthetic binary classification data with 10 named features."""
    X, y = make_classification(
        n_samples=300,
        n_features=10,
        n_informative=6,
        n_redundant=2,
        random_state=42,
    )
    X = pd.DataFrame(X, columns=[f"x{i}" for i in range(10)])
    return X, pd.Series(y, name="default")


@pytest.fixture(scope="session")
def fitted_model(credit_data):
    """Logistic regression fitted on the named DataFrame."""
    X, y = credit_data
    return LogisticRegression(max_iter=1000).fit(X, y)


@pytest.fixture
def scenario_scorer():
    """Single variable scorer: v1 / 2."""
    return CallableScorer(lambda frame: frame["v1"] / 2, ["v1"])


@pytest.fixture
def scenario_population():
    return pd.DataFrame({"v1": [0, 1, 2]})


@pytest.fixture
def additive_scorer():
    """Additive scorer with dyadic coefficients so that means are exact."""

    def score(frame):
        return 0.125 + 0.125 * frame["a"] + 0.25 * frame["b"] + 0.0625 * frame["c"]

    return CallableScorer(score, ["a", "b", "c"])


@pytest.fixture
def additive_population():
    return pd.DataFrame(
        {
            "a": [0, 1, 0, 1],
            "b": [0, 0, 1, 1],
            "c": [1, 0, 0, 1],
        }
    )


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are read from the environment once per process; reset around each test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def seed():
    np.random.seed(42)
