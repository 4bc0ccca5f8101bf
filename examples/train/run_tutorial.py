"""The training tutorial written out step by step with the library API."""

import logging
from pathlib import Path

from amlrun import (
    ComputeSpec,
    EnvironmentSpec,
    Estimator,
    Experiment,
    delete_compute,
    get_or_create_compute,
    load_workspace_from_config,
)
from amlrun.core import configure_logging

LOGGER = logging.getLogger(__name__)

HERE = Path(__file__).resolve().parent


def main() -> None:
    configure_logging()

    ws = load_workspace_from_config()
    experiment = Experiment(ws, "iris-logreg")

    cluster = ComputeSpec(name="cpu-cluster", vm_size="STANDARD_D2_V2", max_nodes=2)
    get_or_create_compute(ws, cluster)

    try:
        estimator = Estimator(
            source_directory=HERE,
            entry_script="train.py",
            compute_target=cluster.name,
            script_params={"C": 0.5, "max-iter": 300},
            environment=EnvironmentSpec(pip_packages=["scikit-learn", "amlrun"]),
        )
        run = experiment.submit(estimator)
        LOGGER.info("Follow the run at %s", run.studio_url)

        run.wait_for_completion(show_output=True)
        for name, value in sorted(run.get_metrics().items()):
            LOGGER.info("%s: %s", name, value)
    finally:
        delete_compute(ws, cluster.name)


if __name__ == "__main__":
    main()
