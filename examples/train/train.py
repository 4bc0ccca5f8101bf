"""Training script executed on the cluster by examples/train/job.yaml.

The job environment installs amlrun (see ``pip_packages`` in job.yaml) for the
metric helpers.
"""

import argparse

import mlflow
from sklearn.datasets import load_iris
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import accuracy_score, f1_score
from sklearn.model_selection import train_test_split

from amlrun.tracking import log_list, log_metric


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--C", type=float, default=1.0)
    parser.add_argument("--max-iter", type=int, default=200)
    parser.add_argument("--test-size", type=float, default=0.2)
    args = parser.parse_args()

    features, labels = load_iris(return_X_y=True)
    x_train, x_test, y_train, y_test = train_test_split(features, labels, test_size=args.test_size, random_state=42)

    mlflow.log_param("C", args.C)
    mlflow.log_param("max_iter", args.max_iter)

    model = LogisticRegression(C=args.C, max_iter=args.max_iter)
    model.fit(x_train, y_train)
    predictions = model.predict(x_test)

    log_metric("accuracy", accuracy_score(y_test, predictions))
    log_metric("f1_macro", f1_score(y_test, predictions, average="macro"))
    log_list("coefficient", model.coef_.ravel())


if __name__ == "__main__":
    main()
