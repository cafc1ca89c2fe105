"""
Tests for the escrow-ledger command line.

Verifies:
- init-db creates the schema on the given database
- sweep and auto-match print a JSON summary
- Missing database URL and invalid configuration exit non-zero
- build_scheduler wires jobs from configuration
"""

import json
from unittest.mock import MagicMock

import pytest
import yaml

from escrow_batch.cli import DATABASE_URL_ENV, build_scheduler, main
from escrow_kernel.db.engine import reset_engine


@pytest.fixture
def database_url(tmp_path):
    yield f"sqlite:///{tmp_path / 'cli.db'}"
    reset_engine()


def _last_json(capsys) -> dict:
    out = capsys.readouterr().out.strip().splitlines()
    return json.loads(out[-1])


class TestCommands:

    def test_init_db_then_sweep(self, database_url, capsys):
        assert main(["--database-url", database_url, "init-db"]) == 0
        assert _last_json(capsys) == {"command": "init-db", "status": "ok"}

        assert main([
            "--database-url", database_url, "sweep", "--as-of", "2024-02-01T00:00:00",
        ]) == 0
        payload = _last_json(capsys)
        assert payload["command"] == "sweep"
        assert payload["released_count"] == 0
        assert payload["as_of"].startswith("2024-02-01")

    def test_auto_match_on_empty_ledger(self, database_url, capsys):
        main(["--database-url", database_url, "init-db"])
        capsys.readouterr()

        assert main(["--database-url", database_url, "auto-match", "--limit", "10"]) == 0
        payload = _last_json(capsys)
        assert payload["matched"] == []
        assert payload["unmatched"] == []

    def test_database_url_from_environment(self, database_url, capsys, monkeypatch):
        monkeypatch.setenv(DATABASE_URL_ENV, database_url)
        assert main(["init-db"]) == 0


class TestFailures:

    def test_missing_database_url(self, capsys, monkeypatch):
        monkeypatch.delenv(DATABASE_URL_ENV, raising=False)
        assert main(["sweep"]) == 2
        assert DATABASE_URL_ENV in capsys.readouterr().err

    def test_invalid_configuration(self, database_url, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({
            "config_id": "bad",
            "currency": "ZZZ",
            "platform_fee": {"rate_percent": "4.99", "fixed_cents": 100},
            "hold": {"default_days": 14},
        }))

        assert main(["--database-url", database_url, "--config", str(path), "sweep"]) == 1
        assert "INVALID_FEE_CONFIGURATION" in capsys.readouterr().err


class TestBuildScheduler:

    def test_jobs_follow_configuration(self, config):
        orchestrator = MagicMock()
        orchestrator.config = config

        scheduler = build_scheduler(orchestrator)

        assert scheduler.job_names == ["release_sweep", "auto_match"]

    def test_auto_match_disabled(self, config):
        import dataclasses

        orchestrator = MagicMock()
        orchestrator.config = dataclasses.replace(
            config,
            reconciliation=dataclasses.replace(config.reconciliation, auto_match=False),
        )

        assert build_scheduler(orchestrator, interval_seconds=1).job_names == ["release_sweep"]
