"""Tests for running export jobs across several profiles."""

from __future__ import annotations

import csv
from pathlib import Path

import pytest
from sqlalchemy import create_engine, text

from db_export.database.runner import ExportRunner, exit_code_for
from db_export.errors import (
    ExportCancelled,
    ProfileError,
    QueryError,
    SinkError,
    SourceConnectionError,
)
from db_export.pipeline import ExportPipeline, ExportResult, PipelineState

QUERY = "SELECT id, name FROM items ORDER BY id"


def _read_csv(path: Path) -> list[list[str]]:
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


def test_each_profile_gets_its_own_file(config_path: Path, tmp_path: Path) -> None:
    runner = ExportRunner(config_path)
    jobs = runner.plan_jobs(["base", "child", "base"], QUERY, save_path=tmp_path / "out.csv")

    assert [job.target.name for job in jobs] == ["out_base.csv", "out_child.csv"]

    results = runner.run(jobs)

    assert [result.state for result in results] == [PipelineState.COMPLETED] * 2
    assert exit_code_for(results) == 0
    for job in jobs:
        assert _read_csv(job.target) == [
            ["id", "name"],
            ["1", "apple"],
            ["2", "pear"],
            ["3", "plum"],
        ]


def test_single_profile_keeps_the_save_path(config_path: Path, tmp_path: Path) -> None:
    runner = ExportRunner(config_path)
    (job,) = runner.plan_jobs(["base"], QUERY, save_path=tmp_path / "out.json")
    assert job.target == tmp_path / "out.json"
    assert job.output_format == "json"


def test_failures_are_independent(config_path: Path, tmp_path: Path) -> None:
    runner = ExportRunner(config_path)
    results = runner.run(runner.plan_jobs(["base", "nope"], QUERY, save_path=tmp_path / "o.csv"))

    assert results[0].ok
    assert isinstance(results[1].error, ProfileError)
    assert results[1].error.context["profile"] == "nope"
    assert exit_code_for(results) == 5
    assert not (tmp_path / "o_nope.csv").exists()


def test_environment_selects_the_child_profile(config_path: Path, tmp_path: Path) -> None:
    runner = ExportRunner(config_path, environment="broken")
    results = runner.run(runner.plan_jobs(["base", "child"], QUERY, save_path=tmp_path / "o.csv"))

    assert isinstance(results[0].error, SourceConnectionError)
    assert results[1].ok
    assert exit_code_for(results) == 2
    assert not (tmp_path / "o_base.csv").exists()


@pytest.mark.parametrize(
    "query",
    ["DELETE FROM items", "SELECT 1; DELETE FROM items", "SELECT * INTO copy FROM items"],
)
def test_writes_are_rejected(
    config_path: Path, sqlite_db: Path, tmp_path: Path, query: str
) -> None:
    runner = ExportRunner(config_path)
    (result,) = runner.run(runner.plan_jobs(["base"], query, save_path=tmp_path / "o.csv"))

    assert isinstance(result.error, QueryError)
    assert result.exit_code == 3

    engine = create_engine(f"sqlite:///{sqlite_db.as_posix()}")
    with engine.connect() as conn:
        assert conn.execute(text("SELECT count(*) FROM items")).scalar_one() == 3
    engine.dispose()


def test_plan_rejects_shared_stdout_and_unknown_formats(config_path: Path) -> None:
    runner = ExportRunner(config_path)
    with pytest.raises(SinkError):
        runner.plan_jobs(["base", "child"], QUERY)
    with pytest.raises(SinkError):
        runner.plan_jobs(["base"], QUERY, output_format="yaml")
    with pytest.raises(ProfileError):
        runner.plan_jobs([], QUERY)

    (job,) = runner.plan_jobs(["base"], QUERY, save_path="-")
    assert job.target is None
    assert job.output_format == "text"


def _failed(error: Exception) -> ExportResult:
    return ExportResult("job", PipelineState.FAILED, 0, 0, 0.0, error=error)


def test_exit_code_priority() -> None:
    ok = ExportResult("job", PipelineState.COMPLETED, 1, 1, 0.0)
    assert exit_code_for([]) == 0
    assert exit_code_for([ok]) == 0
    assert exit_code_for([ok, _failed(SinkError("disk")), _failed(QueryError("bad"))]) == 3
    assert exit_code_for([_failed(ProfileError("x")), _failed(SourceConnectionError("y"))]) == 2
    assert exit_code_for([_failed(SourceConnectionError("y")), _failed(ExportCancelled("z"))]) == 130


def test_sink_failure_leaves_other_jobs_running(config_path: Path, tmp_path: Path) -> None:
    # A directory at the output path makes publishing the file fail.
    (tmp_path / "o_child.csv").mkdir()
    runner = ExportRunner(config_path)
    results = runner.run(runner.plan_jobs(["base", "child"], QUERY, save_path=tmp_path / "o.csv"))

    assert results[0].ok
    assert _read_csv(tmp_path / "o_base.csv")[0] == ["id", "name"]
    assert results[1].state is PipelineState.FAILED
    assert isinstance(results[1].error, SinkError)
    assert results[1].error.context["profile"] == "child"
    assert exit_code_for(results) == 4
    assert sorted(path.name for path in tmp_path.iterdir() if path.name.startswith("o_")) == [
        "o_base.csv",
        "o_child.csv",
    ]
    assert (tmp_path / "o_child.csv").is_dir()


def test_unexpected_errors_become_failed_results(
    config_path: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    run = ExportPipeline.run

    def run_or_crash(pipeline: ExportPipeline, connection_params):
        if pipeline.job_id == "child":
            raise RuntimeError("worker crashed")
        return run(pipeline, connection_params)

    monkeypatch.setattr(ExportPipeline, "run", run_or_crash)
    runner = ExportRunner(config_path)
    results = runner.run(runner.plan_jobs(["base", "child"], QUERY, save_path=tmp_path / "o.csv"))

    assert results[0].ok
    assert results[1].state is PipelineState.FAILED
    assert "worker crashed" in str(results[1].error)
    assert results[1].error.context["job"] == "child"
    assert results[1].exit_code == 1
    assert exit_code_for(results) == 1
    assert not (tmp_path / "o_child.csv").exists()


def test_sqlite_output_per_profile(config_path: Path, tmp_path: Path) -> None:
    runner = ExportRunner(config_path)
    jobs = runner.plan_jobs(
        ["base", "child"], QUERY, save_path=tmp_path / "copy.db", sink_options={"table": "fruit"}
    )
    assert {job.output_format for job in jobs} == {"sqlite"}

    results = runner.run(jobs)

    assert exit_code_for(results) == 0
    for job, result in zip(jobs, results):
        assert result.bytes_written == job.target.stat().st_size
        engine = create_engine(f"sqlite:///{job.target.as_posix()}")
        with engine.connect() as conn:
            rows = conn.execute(text("SELECT id, name FROM fruit ORDER BY id")).all()
        engine.dispose()
        assert [tuple(row) for row in rows] == [(1, "apple"), (2, "pear"), (3, "plum")]


def test_sqlite_output_cannot_go_to_stdout(config_path: Path) -> None:
    runner = ExportRunner(config_path)
    (result,) = runner.run(runner.plan_jobs(["base"], QUERY, output_format="sqlite"))
    assert isinstance(result.error, SinkError)
    assert result.exit_code == 4
