"""
Tests for foreach, its backends and the worker entry script.
"""
import threading
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import cloudpickle
import pytest

from amlrun.core.exceptions import IncompleteResultsError, ParallelTaskError, RunFailedError, RunTimeoutError
from amlrun.environment import EnvironmentSpec
from amlrun.parallel import (
    AzureMLParallelBackend,
    LocalParallelBackend,
    ParallelBackend,
    SequentialBackend,
    TaskFailure,
    chunk_bounds,
    foreach,
    register_do_azureml_parallel,
    register_parallel_backend,
    registered_backend,
    reset_parallel_backend,
)
from amlrun.parallel import _entry
from amlrun.parallel.bundle import BUNDLE_FILENAME, ENTRY_SCRIPT_NAME, TaskBundle, read_results
from amlrun.parallel.partition import total_workers

pytestmark = pytest.mark.parallel


@pytest.fixture(autouse=True)
def clean_registry():
    reset_parallel_backend()
    yield
    reset_parallel_backend()


def _fails_on(bad):
    def fn(x):
        if x in bad:
            raise ValueError(f"bad item {x}")
        return x * 10

    return fn


class TestPartition:
    def test_even_split(self):
        assert chunk_bounds(6, 3) == [(0, 2), (2, 4), (4, 6)]

    def test_first_ranks_take_the_remainder(self):
        assert chunk_bounds(7, 3) == [(0, 3), (3, 5), (5, 7)]

    def test_more_workers_than_items(self):
        assert chunk_bounds(2, 4) == [(0, 1), (1, 2), (2, 2), (2, 2)]

    def test_ranges_cover_every_index_once(self):
        bounds = chunk_bounds(150, 6)
        covered = [index for start, stop in bounds for index in range(start, stop)]
        assert covered == list(range(150))
        sizes = {stop - start for start, stop in bounds}
        assert max(sizes) - min(sizes) <= 1

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            chunk_bounds(5, 0)
        with pytest.raises(ValueError):
            chunk_bounds(-1, 2)
        with pytest.raises(ValueError):
            total_workers(0, 2)
        assert total_workers(3, 2) == 6


class TestWorkerEntry:
    def test_resolve_rank_prefers_openmpi(self):
        env = {"OMPI_COMM_WORLD_RANK": "3", "OMPI_COMM_WORLD_SIZE": "6", "RANK": "0", "WORLD_SIZE": "1"}
        assert _entry.resolve_rank(env) == (3, 6)

    def test_resolve_rank_fallbacks(self):
        assert _entry.resolve_rank({"PMI_RANK": "1", "PMI_SIZE": "2"}) == (1, 2)
        assert _entry.resolve_rank({"RANK": "2", "WORLD_SIZE": "4"}) == (2, 4)
        assert _entry.resolve_rank({}) == (0, 1)

    def test_run_chunk_records_failures(self):
        records = _entry.run_chunk(_fails_on({2}), [0, 1, 2, 3], 1, 4, "remove")

        assert [record["index"] for record in records] == [1, 2, 3]
        assert records[0] == {"index": 1, "ok": True, "value": 10}
        assert records[1]["ok"] is False
        assert records[1]["error"]["type"] == "ValueError"
        assert "bad item 2" in records[1]["error"]["message"]
        assert "Traceback" in records[1]["error"]["traceback"]

    def test_run_chunk_stops_at_first_failure(self):
        records = _entry.run_chunk(_fails_on({1}), [0, 1, 2], 0, 3, "stop")
        assert [record["index"] for record in records] == [0, 1]

    def test_main_writes_rank_results(self, tmp_path, monkeypatch):
        TaskBundle(fn=lambda x: x + 1, items=list(range(5)), chunks=chunk_bounds(5, 2)).write(tmp_path / "code")
        monkeypatch.setenv("OMPI_COMM_WORLD_RANK", "1")
        monkeypatch.setenv("OMPI_COMM_WORLD_SIZE", "2")

        code = _entry.main(["--bundle", str(tmp_path / "code" / BUNDLE_FILENAME), "--results", str(tmp_path / "out")])

        assert code == 0
        with (tmp_path / "out" / "results_1.pkl").open("rb") as handle:
            records = cloudpickle.load(handle)
        assert [(record["index"], record["value"]) for record in records] == [(3, 4), (4, 5)]


class TestBundle:
    def test_write_copies_entry_script(self, tmp_path):
        path = TaskBundle(fn=len, items=["a", "bb"], chunks=[(0, 2)], errorhandling="pass").write(tmp_path)

        assert path == tmp_path / BUNDLE_FILENAME
        assert (tmp_path / ENTRY_SCRIPT_NAME).read_text() == Path(_entry.__file__).read_text()
        with path.open("rb") as handle:
            payload = cloudpickle.load(handle)
        assert payload["items"] == ["a", "bb"]
        assert payload["errorhandling"] == "pass"

    def test_read_results_merges_nested_files(self, tmp_path):
        nested = tmp_path / "named-outputs" / "results"
        nested.mkdir(parents=True)
        for rank, records in enumerate([[{"index": 0, "ok": True, "value": "a"}], [{"index": 1, "ok": True, "value": "b"}]]):
            with _entry.result_path(nested, rank).open("wb") as handle:
                cloudpickle.dump(records, handle)
        (nested / "unrelated.txt").write_text("ignored")

        records = read_results(tmp_path)

        assert sorted(records) == [0, 1]
        assert records[1]["value"] == "b"


class TestForeach:
    def test_default_backend_is_sequential(self):
        assert isinstance(registered_backend(), SequentialBackend)
        assert foreach(lambda x: x * x, range(5)) == [0, 1, 4, 9, 16]

    def test_empty_items(self):
        assert foreach(lambda x: x, []) == []
        assert foreach(lambda x: x, [], combine=len) == 0

    def test_combine(self):
        assert foreach(lambda x: x, [3, 1, 2], combine=sum) == 6

    def test_invalid_errorhandling(self):
        with pytest.raises(ValueError):
            foreach(lambda x: x, [1], errorhandling="ignore")

    def test_stop_raises_first_failure(self):
        with pytest.raises(ParallelTaskError) as excinfo:
            foreach(_fails_on({2, 4}), range(6), errorhandling="stop")
        assert excinfo.value.index == 2
        assert "ValueError" in str(excinfo.value)
        assert "bad item 2" in excinfo.value.remote_traceback

    def test_remove_drops_failures(self):
        assert foreach(_fails_on({1, 3}), range(5), errorhandling="remove") == [0, 20, 40]

    def test_pass_keeps_failures_in_place(self):
        results = foreach(_fails_on({1}), range(3), errorhandling="pass")

        assert results[0] == 0 and results[2] == 20
        assert isinstance(results[1], TaskFailure)
        assert results[1].index == 1
        assert results[1].error_type == "ValueError"

    def test_missing_results_are_reported(self):
        class LossyBackend(ParallelBackend):
            name = "lossy"

            def execute(self, fn, items, options):
                return {0: {"index": 0, "ok": True, "value": fn(items[0])}}

        with pytest.raises(IncompleteResultsError) as excinfo:
            foreach(lambda x: x, [1, 2, 3], backend=LossyBackend())
        assert excinfo.value.missing == [1, 2]

    def test_call_options_override_backend_defaults(self):
        seen = {}

        class RecordingBackend(SequentialBackend):
            def defaults(self):
                return {"node_count": 4, "process_count_per_node": 2, "experiment_name": "default-exp"}

            def execute(self, fn, items, options):
                seen["options"] = options
                return super().execute(fn, items, options)

        register_parallel_backend(RecordingBackend())
        foreach(lambda x: x, [1], node_count=2, packages=["pandas"])

        options = seen["options"]
        assert (options.node_count, options.process_count_per_node) == (2, 2)
        assert options.experiment_name == "default-exp"
        assert options.packages == ("pandas",)


class TestLocalBackend:
    def test_thread_pool_preserves_order(self):
        backend = LocalParallelBackend(executor="thread")
        results = foreach(lambda x: x * 2, range(23), node_count=2, process_count_per_node=3, backend=backend)
        assert results == [x * 2 for x in range(23)]

    def test_process_pool_runs_closures(self):
        offset = 100
        backend = LocalParallelBackend(max_workers=2, executor="process")

        results = foreach(lambda x: x + offset, range(7), node_count=1, process_count_per_node=3, backend=backend)

        assert results == [x + 100 for x in range(7)]

    def test_failure_in_one_chunk(self):
        backend = LocalParallelBackend(executor="thread")
        results = foreach(_fails_on({5}), range(8), errorhandling="remove", process_count_per_node=4, backend=backend)
        assert results == [0, 10, 20, 30, 40, 60, 70]

    def test_timeout(self):
        release = threading.Event()
        backend = LocalParallelBackend(executor="thread")
        try:
            with pytest.raises(RunTimeoutError):
                foreach(lambda x: release.wait(5), [1, 2], job_timeout=0.2, backend=backend)
        finally:
            release.set()

    def test_explicit_zero_is_not_replaced_by_defaults(self):
        backend = LocalParallelBackend(executor="thread")
        with pytest.raises(ValueError):
            foreach(lambda x: x, [1, 2], node_count=0, backend=backend)
        with pytest.raises(ValueError):
            foreach(lambda x: x, [1, 2], job_timeout=0, backend=backend)

    def test_invalid_executor(self):
        with pytest.raises(ValueError):
            LocalParallelBackend(executor="gpu")


class TestAzureMLBackend:
    @pytest.fixture
    def cluster_workspace(self, workspace, tmp_path, monkeypatch):
        """Workspace whose jobs run the entry script locally, one call per MPI rank."""
        staging_root = tmp_path / "staging"
        submitted = SimpleNamespace(name="quiet_plum_42", status="Completed", studio_url="https://ml.azure.com/x")
        workspace.jobs.create_or_update.return_value = submitted
        workspace.jobs.get.return_value = submitted

        def fake_download(name, download_path, output_name=None):
            assert output_name == "results"
            bundle = next(staging_root.glob(f"amlrun-foreach-*/code/{BUNDLE_FILENAME}"))
            with bundle.open("rb") as handle:
                world_size = len(cloudpickle.load(handle)["chunks"])
            output_dir = Path(download_path) / "named-outputs" / "results"
            for rank in range(world_size):
                monkeypatch.setenv("OMPI_COMM_WORLD_RANK", str(rank))
                monkeypatch.setenv("OMPI_COMM_WORLD_SIZE", str(world_size))
                _entry.main(["--bundle", str(bundle), "--results", str(output_dir)])

        workspace.jobs.download.side_effect = fake_download
        workspace.staging_root = staging_root
        return workspace

    def test_round_trip(self, cluster_workspace):
        backend = register_do_azureml_parallel(
            cluster_workspace, "r-cluster", staging_root=cluster_workspace.staging_root
        )
        scale = 3

        with patch("amlrun.estimator.command") as command, patch("amlrun.environment.Environment") as environment:
            results = foreach(
                lambda row: row * scale,
                range(10),
                packages=["scikit-learn"],
                node_count=3,
                process_count_per_node=2,
                experiment_name="iris_inferencing",
                job_timeout=3600,
            )

        assert results == [row * 3 for row in range(10)]
        assert registered_backend() is backend
        assert backend.last_run.name == "quiet_plum_42"

        kwargs = command.call_args.kwargs
        assert kwargs["compute"] == "r-cluster"
        assert kwargs["experiment_name"] == "iris_inferencing"
        assert kwargs["instance_count"] == 3
        assert kwargs["distribution"].process_count_per_instance == 2
        assert kwargs["command"] == (
            f"python {ENTRY_SCRIPT_NAME} --bundle {BUNDLE_FILENAME} --results ${{{{outputs.results}}}}"
        )
        assert "results" in kwargs["outputs"]
        assert kwargs["tags"]["amlrun.foreach.items"] == "10"
        assert kwargs["tags"]["amlrun.foreach.workers"] == "6"
        pip = environment.call_args.kwargs["conda_file"]["dependencies"][-1]["pip"]
        assert pip[0] == "scikit-learn" and "cloudpickle" in pip
        command.return_value.set_limits.assert_called_once_with(timeout=3600)

        # staging is removed after the results are read
        assert list(cluster_workspace.staging_root.iterdir()) == []

    def test_remote_failure_with_pass(self, cluster_workspace):
        backend = AzureMLParallelBackend(
            cluster_workspace,
            SimpleNamespace(name="r-cluster"),
            environment=EnvironmentSpec(pip_packages=["pandas"]),
            node_count=2,
            staging_root=cluster_workspace.staging_root,
        )

        with patch("amlrun.estimator.command"):
            results = foreach(_fails_on({0}), range(4), errorhandling="pass", backend=backend)

        assert isinstance(results[0], TaskFailure)
        assert results[1:] == [10, 20, 30]
        assert backend.compute_name == "r-cluster"

    def test_defaults_come_from_registration(self, workspace):
        backend = AzureMLParallelBackend(workspace, "r-cluster", node_count=3, process_count_per_node=2, job_timeout=60)
        assert backend.defaults() == {
            "node_count": 3,
            "process_count_per_node": 2,
            "experiment_name": "amlrun-foreach",
            "job_timeout": 60,
        }

    def test_failed_job_keeps_staging_when_asked(self, workspace, tmp_path):
        workspace.jobs.create_or_update.return_value = SimpleNamespace(name="sad_fig_7", status="Failed", studio_url=None)
        workspace.jobs.get.return_value = SimpleNamespace(name="sad_fig_7", status="Failed", studio_url=None)
        backend = AzureMLParallelBackend(workspace, "r-cluster", staging_root=tmp_path, keep_staging=True)

        with patch("amlrun.estimator.command"), pytest.raises(RunFailedError) as excinfo:
            foreach(lambda x: x, [1, 2], backend=backend)

        assert excinfo.value.status == "Failed"
        staged = list(tmp_path.glob("amlrun-foreach-*/code"))
        assert len(staged) == 1 and (staged[0] / ENTRY_SCRIPT_NAME).exists()
        workspace.jobs.download.assert_not_called()
