import json
import sqlite3

import pandas as pd
import pytest

from batchflow.adapters.destinations import CSVLoader, JSONLoader, LedgerLoader, SQLiteLoader
from batchflow.adapters.registry import LOADERS, SOURCES
from batchflow.adapters.sources import CSVSource, JSONSource
from batchflow.common.exceptions import ConfigurationError, ReadError
from batchflow.common.models import Batch, Row


def read_all(source):
    with source:
        return list(source.read())


# Sources

def test_csv_source_reads_relative_to_sources_path(make_config, sources_dir):
    records = read_all(CSVSource({'type': 'csv', 'path': 'users.csv'}, make_config()))

    assert records == [
        {'User ID': 10, 'Display Name': 'Ada', 'Email': 'ada@example.com'},
        {'User ID': 11, 'Display Name': 'Grace', 'Email': 'grace@example.com'},
    ]


def test_csv_source_empty_cells_are_none(tmp_path):
    path = tmp_path / "gaps.csv"
    path.write_text("a,b\n1,\n,x\n", encoding="utf-8")

    records = read_all(CSVSource({'path': str(path), 'chunk_size': 1}))

    assert records[0]['b'] is None
    assert records[1]['a'] is None


def test_csv_source_missing_file(make_config, sources_dir):
    with pytest.raises(ReadError):
        read_all(CSVSource({'path': 'nope.csv'}, make_config()))


def test_csv_source_requires_path():
    with pytest.raises(ConfigurationError):
        CSVSource({'type': 'csv'})


def test_json_source_detects_lines(make_config, sources_dir):
    records = read_all(SOURCES.create({'type': 'json', 'path': 'posts.jsonl'}, make_config()))

    assert [r['id'] for r in records] == [1, 2, 3]


def test_json_source_array_with_json_path(tmp_path):
    path = tmp_path / "export.json"
    path.write_text(json.dumps({'data': {'records': [{'id': 1}, {'id': 2}, 3]}}), encoding="utf-8")

    records = read_all(JSONSource({'path': str(path), 'json_path': 'data.records'}))

    assert records == [{'id': 1}, {'id': 2}, {'value': 3}]


def test_json_source_single_line_object_without_json_path_is_one_record(tmp_path):
    path = tmp_path / "post.json"
    path.write_text(json.dumps({'id': 1, 'tags': ['a']}), encoding="utf-8")

    assert read_all(JSONSource({'path': str(path)})) == [{'id': 1, 'tags': ['a']}]


def test_json_source_rejects_non_array(tmp_path):
    path = tmp_path / "object.json"
    path.write_text(json.dumps({'id': 1, 'name': 'x'}, indent=2), encoding="utf-8")

    with pytest.raises(ReadError, match="not an array"):
        read_all(JSONSource({'path': str(path)}))


def test_json_source_skips_bad_lines(tmp_path):
    path = tmp_path / "posts.jsonl"
    path.write_text('{"id": 1}\nnot json\n{"id": 2}\n', encoding="utf-8")

    records = read_all(JSONSource({'path': str(path), 'mode': 'lines'}))

    assert records == [{'id': 1}, {'id': 2}]


def test_json_source_invalid_mode():
    with pytest.raises(ConfigurationError):
        JSONSource({'path': 'x.json', 'mode': 'xml'})


# File loaders

def post_rows():
    return [
        Row.create({'post.id': 1, 'post.title': 'Hello', 'tmp': 'x'}, uid='r1'),
        Row.create({'post.id': 2, 'post.title': 'Again', 'tmp': 'y'}, uid='r2'),
    ]


def test_csv_loader_writes_prefixed_fields(make_config, tmp_path):
    loader = CSVLoader({
        'type': 'csv',
        'name': 'export',
        'destination': {'path': 'out', 'file': 'posts.csv'},
        'overwrite': True,
        'prefix': 'post',
        'ledger': True,
    }, make_config())

    for batch in Batch.chunks(post_rows(), 1):
        loader.run(batch)
    loader.close()

    df = pd.read_csv(tmp_path / "out" / "posts.csv")
    assert list(df.columns) == ['id', 'title']
    assert df['title'].tolist() == ['Hello', 'Again']
    assert loader.get_ledger().entries[1] == {
        'uid': 'r2',
        'export.file': str(loader.file_path),
        'export.record': 2,
    }


def test_csv_loader_without_overwrite_stamps_the_file_name(make_config):
    loader = CSVLoader({'type': 'csv', 'file': 'posts.csv'}, make_config())
    assert loader.file_path.name.startswith("posts-")
    assert loader.file_path.suffix == ".csv"


def test_json_loader_array_is_written_on_close(make_config, tmp_path):
    loader = JSONLoader({'type': 'json', 'file': 'posts.json', 'overwrite': True,
                         'prefix': ['post.', 'etl.'], 'include_uid': True}, make_config())

    loader.run(Batch(post_rows()))
    assert not (tmp_path / "posts.json").exists()
    loader.close()

    written = json.loads((tmp_path / "posts.json").read_text())
    assert written == [
        {'etl.uid': 'r1', 'post.id': 1, 'post.title': 'Hello'},
        {'etl.uid': 'r2', 'post.id': 2, 'post.title': 'Again'},
    ]


def test_json_loader_lines_append_per_batch(make_config, tmp_path):
    loader = JSONLoader({'type': 'json', 'file': 'posts.jsonl', 'overwrite': True, 'mode': 'lines'},
                        make_config())

    for batch in Batch.chunks(post_rows(), 1):
        loader.run(batch)

    lines = (tmp_path / "posts.jsonl").read_text().splitlines()
    assert [json.loads(line)['post.id'] for line in lines] == [1, 2]


def test_json_loader_invalid_mode(make_config):
    with pytest.raises(ConfigurationError):
        JSONLoader({'type': 'json', 'mode': 'csv'}, make_config())


# SQLite loader

def sqlite_step(**options):
    step = {'type': 'sqlite', 'name': 'db', 'database': 'site.db', 'table': 'posts', 'entity': 'post'}
    step.update(options)
    return step


def test_sqlite_loader_mints_ids_into_rows_and_ledger(make_config, tmp_path):
    loader = SQLiteLoader(sqlite_step(ledger={'fields': ['post.title']}), make_config())
    rows = [row.without('post.id') for row in post_rows()]

    loader.run(Batch(rows))
    mutated = loader.collect_mutated_rows()
    loader.close()

    assert mutated['r1'].get('post.id') == 1
    assert mutated['r2'].get('post.id') == 2
    assert loader.collect_mutated_rows() == {}
    assert loader.get_ledger().entries == [
        {'uid': 'r1', 'post.id': 1, 'post.title': 'Hello'},
        {'uid': 'r2', 'post.id': 2, 'post.title': 'Again'},
    ]

    with sqlite3.connect(str(tmp_path / "site.db")) as conn:
        rows = conn.execute('SELECT id, etl_uid, title FROM posts ORDER BY id').fetchall()
    assert rows == [(1, 'r1', 'Hello'), (2, 'r2', 'Again')]


def test_sqlite_loader_upserts_on_natural_key(make_config, tmp_path):
    first = SQLiteLoader(sqlite_step(entity='user', table='users', upsert='email'), make_config())
    first.run(Batch([Row.create({'user.email': 'ada@example.com', 'user.name': 'Ada'}, uid='u1')]))
    first.close()

    second = SQLiteLoader(sqlite_step(entity='user', table='users', upsert='email'), make_config())
    second.run(Batch([Row.create({'user.email': 'ada@example.com', 'user.name': 'Ada L.'}, uid='u9')]))
    mutated = second.collect_mutated_rows()
    second.close()

    assert mutated['u9'].get('user.id') == 1
    with sqlite3.connect(str(tmp_path / "site.db")) as conn:
        assert conn.execute('SELECT id, name FROM users').fetchall() == [(1, 'Ada L.')]


def test_sqlite_loader_stores_lists_as_json(make_config, tmp_path):
    loader = SQLiteLoader(sqlite_step(), make_config())
    loader.run(Batch([Row.create({'post.tags': ['a', 'b']}, uid='r1')]))
    loader.close()

    with sqlite3.connect(str(tmp_path / "site.db")) as conn:
        (tags,) = conn.execute('SELECT tags FROM posts').fetchone()
    assert json.loads(tags) == ['a', 'b']


def test_sqlite_loader_requires_table(make_config):
    with pytest.raises(ConfigurationError, match="requires 'table'"):
        SQLiteLoader({'type': 'sqlite', 'database': 'x.db'}, make_config())


def test_sqlite_loader_updates_rows_that_already_carry_an_id(make_config, tmp_path):
    loader = SQLiteLoader(sqlite_step(), make_config())
    loader.run(Batch([Row.create({'post.title': 'Draft'}, uid='r1')]))
    minted = loader.collect_mutated_rows()['r1']

    loader.run(Batch([minted.with_values({'post.title': 'Final'})]))
    loader.close()

    with sqlite3.connect(str(tmp_path / "site.db")) as conn:
        assert conn.execute('SELECT id, title FROM posts').fetchall() == [(1, 'Final')]


def test_sqlite_entity_defaults_to_table(make_config):
    loader = SQLiteLoader({'type': 'sqlite', 'database': 'x.db', 'table': 'media'}, make_config())
    assert loader.entity_type == 'media'
    assert loader.id_field == 'media.id'


# Ledger loader

def test_ledger_loader_records_ledger_fields():
    loader = LOADERS.create({'type': 'ledger', 'name': 'refs'})
    loader.run(Batch([
        Row.create({'ledger.source_id': 7, 'ledger.kind': 'page', 'post.title': 'x'}, uid='r1'),
    ]))

    assert loader.has_ledger()
    assert loader.get_ledger().entries == [{'uid': 'r1', 'source_id': 7, 'kind': 'page'}]


def test_loader_without_ledger_records_nothing(make_config):
    loader = JSONLoader({'type': 'json', 'overwrite': True}, make_config())
    loader.run(Batch(post_rows()))

    assert loader.get_ledger() is None
    assert not loader.has_ledger()


def test_custom_loader_from_registry():
    loader = LOADERS.create({'type': 'custom', 'class': 'tests.helpers.MemoryLoader', 'name': 'mem'})
    assert loader.name == 'mem'


def test_custom_loader_must_subclass_loader():
    with pytest.raises(ConfigurationError, match="not a Loader subclass"):
        LOADERS.create({'type': 'custom', 'class': 'tests.helpers.make_rows'})
