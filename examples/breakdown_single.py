"""
## Break-Down Attribution for a Single Prediction

A break-down explanation splits one predicted probability into:

- the baseline: the average prediction over a reference population
- one additive contribution per variable, in the order the variables were committed

Variables are committed greedily: at each step the variable whose value moves the
expected prediction the most is fixed next. The contributions telescope, so the
baseline plus all contributions equals the model's prediction.
"""

import pandas as pd
from sklearn.datasets import make_classification
from sklearn.ensemble import GradientBoostingClassifier
from sklearn.model_selection import train_test_split

from fastbreakdown import BreakDownExplainer
from fastbreakdown.logging_config import setup_logger

setup_logger(level="INFO")

# Simulated credit data: 10 standardized applicant features, 1 = default
X, y = make_classification(
    n_samples=2000, n_features=10, n_informative=6, n_redundant=2, random_state=42
)
feature_names = [
    "income",
    "debt_ratio",
    "age",
    "tenure",
    "utilization",
    "delinquencies",
    "inquiries",
    "open_lines",
    "savings",
    "employment_years",
]
X = pd.DataFrame(X, columns=feature_names)
X_train, X_test, y_train, y_test = train_test_split(X, y, test_size=0.25, random_state=42)

model = GradientBoostingClassifier(random_state=42).fit(X_train, y_train)

# The training data is the reference population; 500 rows keep each step cheap
explainer = BreakDownExplainer(model, X_train, n_samples=500, random_state=42)
print(explainer.summary())

result = explainer.explain(X_test, sample_idx=0)
print(result.to_frame(include_baseline=True))
print(f"baseline + contributions = {result.total:.6f}")
print(f"model prediction         = {result.prediction:.6f}")
