import json
import logging
import textwrap

import pytest

from batchflow import __version__
from batchflow.cli import main, split_names
from batchflow.common.logging import ROOT_LOGGER


MIGRATION = """
ledger:
  path: ./ledgers
  format: json
sources:
  path: ./sources

migration:
  - name: users
    entity: user
    extract:
      - type: csv
        path: users.csv
        prefix: source
    load:
      - type: sqlite
        database: site.db
        table: users
        entity: user
        ledger:
          fields: [source.user_id]

  - name: posts
    depends_on: [users]
    extract:
      - type: json
        path: posts.jsonl
        prefix: source
    transform:
      - type: ledger_lookup
        job: users
        match: {source.user_id: source.author}
        fields: {user.id: post.author_id}
        on_missing: drop
    load:
      - type: ledger
"""


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    logger.handlers = []
    logger.setLevel(logging.NOTSET)


@pytest.fixture()
def config_file(tmp_path, sources_dir):
    path = tmp_path / "migration.yml"
    path.write_text(textwrap.dedent(MIGRATION), encoding="utf-8")
    return str(path)


def test_split_names():
    assert split_names(" users, posts,,") == ["users", "posts"]
    assert split_names(None) == []


def test_version(capsys):
    with pytest.raises(SystemExit):
        main(["--version"])
    assert __version__ in capsys.readouterr().out


def test_validate(config_file, capsys):
    assert main(["--config", config_file, "validate"]) == 0
    assert "Execution order: users, posts" in capsys.readouterr().out


def test_validate_reports_graph_errors(tmp_path, capsys):
    path = tmp_path / "migration.yml"
    path.write_text("migration:\n  - name: a\n    depends_on: [ghost]\n", encoding="utf-8")

    assert main(["--config", str(path), "validate"]) == 1
    assert "ghost" in capsys.readouterr().out


def test_process_runs_every_job(config_file, tmp_path, capsys):
    assert main(["--config", config_file, "process"]) == 0

    out = capsys.readouterr().out
    assert "users" in out and "done" in out
    assert list((tmp_path / "ledgers").glob("posts-ledger-*.json"))


def test_process_dry_run(config_file, tmp_path):
    assert main(["--config", config_file, "process", "--dry-run"]) == 0
    assert not (tmp_path / "site.db").exists()


def test_process_reports_failed_jobs(config_file, tmp_path):
    (tmp_path / "sources" / "users.csv").unlink()
    assert main(["--config", config_file, "process"]) == 1


def test_process_rejects_unknown_job_filter(config_file, capsys):
    assert main(["--config", config_file, "process", "--only", "ghost"]) == 1
    assert "Unknown job(s): ghost" in capsys.readouterr().out


def test_extract_writes_rows(config_file, tmp_path):
    output = tmp_path / "out" / "users.json"

    assert main(["--config", config_file, "extract", "users", "--output", str(output)]) == 0

    rows = json.loads(output.read_text())
    assert [row["source.display_name"] for row in rows] == ["Ada", "Grace"]
    assert all(row["etl.uid"] for row in rows)


def test_transform_preview_prints_rows(config_file, capsys):
    assert main(["--config", config_file, "process", "--only", "users"]) == 0
    capsys.readouterr()

    assert main(["--config", config_file, "transform", "posts"]) == 0
    out = capsys.readouterr().out
    assert "Transform: posts (2 rows)" in out
    assert "post.author_id" in out


def test_preview_unknown_job(config_file):
    assert main(["--config", config_file, "extract", "ghost"]) == 1


def test_ledger_command(config_file, capsys):
    assert main(["--config", config_file, "ledger", "users"]) == 1

    main(["--config", config_file, "process", "--only", "users"])
    capsys.readouterr()

    assert main(["--config", config_file, "ledger", "users", "--limit", "1"]) == 0
    out = capsys.readouterr().out
    assert "Ledger: users (2 entries)" in out
    assert "user.id" in out


def test_ledger_command_prunes_old_files(config_file, tmp_path, capsys):
    main(["--config", config_file, "process", "--only", "users"])
    main(["--config", config_file, "process", "--only", "users"])
    assert len(list((tmp_path / "ledgers").glob("users-ledger-*.json"))) == 2
    capsys.readouterr()

    assert main(["--config", config_file, "ledger", "users", "--prune", "1"]) == 0

    assert "Deleted 1 old ledger file(s)" in capsys.readouterr().out
    assert len(list((tmp_path / "ledgers").glob("users-ledger-*.json"))) == 1


def test_missing_config_file(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "nope.yml"), "validate"]) == 1
    assert "ConfigurationError" in capsys.readouterr().out
