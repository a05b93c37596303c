"""
## Concurrent Break-Down for Many Observations

`explain_batch` runs the break-down engine for every row on a thread pool and
returns a combined table with one row per (observation, variable). A malformed
observation is reported in `errors` without stopping the rest of the batch.
"""

import pandas as pd
from sklearn.datasets import make_classification
from sklearn.linear_model import LogisticRegression
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler

from fastbreakdown import BreakDownExplainer, Observation
from fastbreakdown.logging_config import setup_logger

setup_logger(level="INFO")

X, y = make_classification(n_samples=1000, n_features=8, n_informative=5, random_state=7)
X = pd.DataFrame(X, columns=[f"var_{i}" for i in range(8)])
y = pd.Series(y, name="default")

model = make_pipeline(StandardScaler(), LogisticRegression(max_iter=1000)).fit(X, y)
explainer = BreakDownExplainer(model, X, n_samples=300, random_state=7)

observations = Observation.from_frame(X.head(50), y.head(50))
# One observation with a missing variable
observations.append(
    Observation(observation_id="incomplete", features={"var_0": 0.1, "var_1": -1.2})
)

batch = explainer.explain_batch(observations, concurrency=4, timeout=60)

print(batch.table.head(16))
print(batch.errors_frame())
print(batch.feature_importance())
