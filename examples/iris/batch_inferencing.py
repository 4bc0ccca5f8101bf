"""Score every row of iris.csv on an AmlCompute cluster.

Run ``python prepare_model.py`` first to produce model.joblib and iris.csv, and
make sure a cluster called ``r-cluster`` exists (``amlrun compute create r-cluster``).
"""

import json
import logging

import joblib
import pandas as pd

from amlrun import get_compute, load_workspace_from_config
from amlrun.core import configure_logging
from amlrun.parallel import foreach, register_do_azureml_parallel

LOGGER = logging.getLogger(__name__)


def main() -> None:
    configure_logging()
    ws = load_workspace_from_config()
    cluster = get_compute(ws, "r-cluster")
    if cluster is None:
        raise SystemExit("Compute 'r-cluster' not found; create it with `amlrun compute create r-cluster`")

    register_do_azureml_parallel(ws, cluster)

    model = joblib.load("model.joblib")
    data = pd.read_csv("iris.csv")
    features = data.drop(columns=["species"], errors="ignore")
    rows = [features.iloc[[i]] for i in range(len(features))]

    def predict_row(row):
        prediction = model.predict(row)
        return json.dumps([str(label) for label in prediction])

    results = foreach(
        predict_row,
        rows,
        packages=["scikit-learn", "pandas"],
        node_count=3,
        process_count_per_node=2,
        experiment_name="iris_inferencing",
        job_timeout=3600,
    )
    LOGGER.info("Scored %d rows; first prediction: %s", len(results), results[0] if results else None)


if __name__ == "__main__":
    main()
