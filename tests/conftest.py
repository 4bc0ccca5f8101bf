import sys
import time
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "cli: command-line interface tests")
    config.addinivalue_line("markers", "parallel: foreach backend tests")


@pytest.fixture
def workspace():
    """An MLClient stand-in; every SDK operation group is a MagicMock."""
    ws = MagicMock(name="MLClient")
    ws.workspace_name = "test-ws"
    return ws


@pytest.fixture
def submitted_job():
    return SimpleNamespace(
        name="brave_kettle_1234",
        status="Completed",
        studio_url="https://ml.azure.com/runs/brave_kettle_1234",
        experiment_name="iris-logreg",
        display_name="brave_kettle_1234",
        compute="cpu-cluster",
        tags={},
        creation_context=None,
    )


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda _: None)


@pytest.fixture
def job_config_file(tmp_path):
    path = tmp_path / "job.yaml"
    path.write_text(
        """
experiment:
  name: iris-logreg
compute:
  name: cpu-cluster
  max_nodes: 2
estimator:
  source_directory: src
  entry_script: train.py
  script_params:
    C: 0.5
    verbose: true
  environment:
    pip_packages: [scikit-learn]
run:
  poll_interval: 1
""",
        encoding="utf-8",
    )
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "train.py").write_text("print('training')\n", encoding="utf-8")
    return path
