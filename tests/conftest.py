import os
from pathlib import Path

import pytest

from batchflow.common.config import ENV_PREFIX, Config
from batchflow.common.models import JobConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    # Keep overrides from the developer's shell out of the tests
    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def make_config(tmp_path: Path):
    """Build a Config from a mapping, rooted at tmp_path"""
    def _make(data=None, **overrides):
        values = {
            'ledger': {'path': 'ledgers', 'format': 'json'},
            'sources': {'path': 'sources'},
            'migration': [],
        }
        values.update(data or {})
        values.update(overrides)
        return Config(data=values, base_dir=str(tmp_path))
    return _make


@pytest.fixture()
def job():
    return JobConfig(name="posts", entity="post")


@pytest.fixture()
def sources_dir(tmp_path: Path) -> Path:
    path = tmp_path / "sources"
    path.mkdir()
    (path / "users.csv").write_text(
        "User ID,Display Name,Email\n"
        "10,Ada,ada@example.com\n"
        "11,Grace,grace@example.com\n",
        encoding="utf-8"
    )
    (path / "posts.jsonl").write_text(
        '{"id": 1, "title": "Hello", "author": 10, "tags": "news, intro"}\n'
        '{"id": 2, "title": "Again", "author": 11, "tags": "misc"}\n'
        '{"id": 3, "title": "Orphan", "author": 99, "tags": ""}\n',
        encoding="utf-8"
    )
    return path
