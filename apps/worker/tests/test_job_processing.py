import json
import subprocess

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from docqa_worker import main as worker
from docqa_worker.main import (
    ClaimedJob,
    _coerce_job_id,
    _document_id_from_payload,
    claim_next_ingest_job,
    get_worker_settings,
    process_claimed_job,
    run_ingest_subprocess,
)


@pytest.fixture
def engine(tmp_path) -> Engine:
    db_engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'worker.db'}")
    with db_engine.begin() as connection:
        connection.execute(
            text(
                """
                CREATE TABLE jobs (
                    id VARCHAR(64) PRIMARY KEY,
                    type VARCHAR(32) NOT NULL,
                    status VARCHAR(32) NOT NULL,
                    payload_json TEXT,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    max_attempts INTEGER NOT NULL DEFAULT 3,
                    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    started_at TIMESTAMP,
                    finished_at TIMESTAMP,
                    error TEXT,
                    result_json TEXT
                )
                """
            )
        )
    return db_engine


def _insert_job(
    engine: Engine,
    job_id: str,
    job_type: str = "document_ingest",
    *,
    payload: str | None = None,
    max_attempts: int = 3,
) -> None:
    with engine.begin() as connection:
        connection.execute(
            text(
                """
                INSERT INTO jobs (id, type, status, payload_json, attempts, max_attempts)
                VALUES (:id, :type, 'queued', :payload, 0, :max_attempts)
                """
            ),
            {
                "id": job_id,
                "type": job_type,
                "payload": payload or json.dumps({"document_id": f"doc-{job_id}"}),
                "max_attempts": max_attempts,
            },
        )


def _job_row(engine: Engine, job_id: str):
    with engine.connect() as connection:
        return connection.execute(
            text(
                "SELECT status, attempts, error, result_json, finished_at FROM jobs WHERE id = :id"
            ),
            {"id": job_id},
        ).mappings().one()


def _failing_runner(message: str):
    def runner(document_id: str):
        raise RuntimeError(message)

    return runner


def test_coerce_job_id_and_payload_document_id() -> None:
    assert _coerce_job_id("42") == 42
    assert _coerce_job_id(7) == 7
    assert _coerce_job_id(" job-a ") == "job-a"
    assert _document_id_from_payload('{"document_id": " doc-1 "}') == "doc-1"
    assert _document_id_from_payload({"document_id": "doc-2"}) == "doc-2"
    assert _document_id_from_payload("not json") is None
    assert _document_id_from_payload({"document_id": ""}) is None


def test_worker_settings_fall_back_to_api_database_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("WORKER_DATABASE_URL", raising=False)
    monkeypatch.setenv("API_DATABASE_URL", "sqlite+pysqlite:///shared.db")
    monkeypatch.setenv("WORKER_POLL_SECONDS", "0")

    settings = get_worker_settings()

    assert settings.database_url == "sqlite+pysqlite:///shared.db"
    assert settings.poll_seconds == 1


def test_claim_only_picks_queued_document_ingest_jobs(engine: Engine) -> None:
    _insert_job(engine, "1", "generic")
    _insert_job(engine, "2")

    job = claim_next_ingest_job(engine)

    assert job == ClaimedJob(id=2, document_id="doc-2", attempts=0, max_attempts=3)
    assert _job_row(engine, "2")["status"] == "running"
    assert claim_next_ingest_job(engine) is None


def test_successful_job_stores_runner_result(engine: Engine) -> None:
    _insert_job(engine, "1")
    job = claim_next_ingest_job(engine)
    assert job is not None
    seen = []

    def runner(document_id: str):
        seen.append(document_id)
        return {"status": "ready", "section_count": 12}

    assert process_claimed_job(engine, job, runner=runner) == "succeeded"

    row = _job_row(engine, "1")
    assert seen == ["doc-1"]
    assert row["status"] == "succeeded"
    assert row["attempts"] == 0
    assert row["error"] is None
    assert json.loads(row["result_json"]) == {"status": "ready", "section_count": 12}
    assert row["finished_at"] is not None


def test_failed_job_is_requeued_until_max_attempts(engine: Engine) -> None:
    _insert_job(engine, "2", max_attempts=2)

    job = claim_next_ingest_job(engine)
    assert job is not None
    assert process_claimed_job(engine, job, runner=_failing_runner("no extractable text")) == "queued"

    row = _job_row(engine, "2")
    assert (row["status"], row["attempts"]) == ("queued", 1)
    assert "no extractable text" in row["error"]
    assert row["finished_at"] is None

    job = claim_next_ingest_job(engine)
    assert job is not None
    assert job.attempts == 1
    process_claimed_job(engine, job, runner=_failing_runner("embedding request failed"))

    row = _job_row(engine, "2")
    assert (row["status"], row["attempts"]) == ("failed", 2)
    assert "embedding request failed" in row["error"]
    assert row["finished_at"] is not None
    assert claim_next_ingest_job(engine) is None


def test_job_without_document_id_fails_without_running(engine: Engine) -> None:
    _insert_job(engine, "3", payload='{"source": "upload"}')
    job = claim_next_ingest_job(engine)
    assert job is not None

    status = process_claimed_job(engine, job, runner=_failing_runner("must not run"))

    row = _job_row(engine, "3")
    assert status == "failed"
    assert row["status"] == "failed"
    assert "missing document_id" in row["error"]


def test_run_ingest_subprocess_parses_last_stdout_line(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}

    def fake_run(command, **kwargs):
        captured["command"] = command
        captured["timeout"] = kwargs["timeout"]
        return subprocess.CompletedProcess(
            command,
            0,
            stdout='[ingest] document ready\n{"document_id": "doc-1", "status": "ready"}\n',
            stderr="",
        )

    monkeypatch.setattr(worker.subprocess, "run", fake_run)

    result = run_ingest_subprocess("doc-1", timeout_seconds=30)

    assert result == {"document_id": "doc-1", "status": "ready"}
    assert captured["command"][1:] == [
        "-m",
        "docqa.services.rag.ingest_job_runner",
        "--payload-json",
        '{"document_id": "doc-1"}',
    ]
    assert captured["timeout"] == 30


def test_run_ingest_subprocess_raises_with_last_stderr_line(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(command, **kwargs):
        return subprocess.CompletedProcess(
            command,
            2,
            stdout='{"status": "error"}\n',
            stderr="[docqa-ingest-runner] document ended in error: no extractable text\n",
        )

    monkeypatch.setattr(worker.subprocess, "run", fake_run)

    with pytest.raises(RuntimeError, match=r"exit=2\): .*no extractable text"):
        run_ingest_subprocess("doc-1")
