import json
import sqlite3

import pytest

from batchflow.common.exceptions import (
    ConfigurationError,
    DependencyValidationError,
    FatalPipelineError,
    MissingDependencyData,
    ReadError,
)
from batchflow.common.models import JobStatus, PhaseType
from batchflow.ledger.registry import LedgerRegistry
from batchflow.orchestration import Pipeline, PipelineJob
from batchflow.orchestration.phases import LoadOrchestrator, PipelineState, normalize_field_name

from tests.helpers import make_rows


USERS_JOB = {
    'name': 'users',
    'entity': 'user',
    'extract': [{'type': 'csv', 'path': 'users.csv', 'prefix': 'source'}],
    'transform': [{
        'type': 'rename',
        'mapping': {'source.display_name': 'user.name', 'source.email': 'user.email'},
    }],
    'load': [{
        'type': 'sqlite',
        'name': 'users_db',
        'database': 'site.db',
        'table': 'users',
        'entity': 'user',
        'ledger': {'fields': ['source.user_id']},
    }],
}

POSTS_JOB = {
    'name': 'posts',
    'entity': 'post',
    'depends_on': ['users'],
    'extract': [{'type': 'json', 'path': 'posts.jsonl', 'prefix': 'source'}],
    'transform': [
        {
            'type': 'ledger_lookup',
            'job': 'users',
            'match': {'source.user_id': 'source.author'},
            'fields': {'user.id': 'post.author_id'},
            'on_missing': 'drop',
        },
        {'type': 'rename', 'mapping': {'source.title': 'post.title'}},
        {'type': 'explode', 'columns': ['source.tags']},
    ],
    'load': [
        {
            'type': 'sqlite',
            'name': 'posts_db',
            'database': 'site.db',
            'table': 'posts',
            'entity': 'post',
            'ledger': {'fields': ['source.id']},
        },
        {
            'type': 'json',
            'name': 'export',
            'file': 'posts.json',
            'overwrite': True,
            'prefix': 'post',
            'ledger': True,
        },
    ],
}


@pytest.fixture()
def migration(make_config, sources_dir):
    def _make(*jobs, **options):
        return make_config(migration=[dict(job) for job in jobs], **options)
    return _make


def read_ledger(path):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def test_normalize_field_name():
    assert normalize_field_name("User ID") == "user_id"
    assert normalize_field_name("displayName") == "display_name"
    assert normalize_field_name("post-title\x00") == "post_title"
    assert normalize_field_name("source.id") == "source.id"


# PipelineJob

def test_job_runs_every_phase(migration):
    config = migration(USERS_JOB)
    job = PipelineJob(config, config.find_job('users')).build()

    result = job.run()

    assert result.status == JobStatus.DONE
    assert (result.rows_extracted, result.rows_transformed, result.rows_loaded) == (2, 2, 2)
    assert set(result.phase_durations) == {'extract', 'transform', 'load'}
    assert len(result.ledger_paths) == 1
    assert result.errors == []

    entries = read_ledger(result.ledger_paths[0])
    assert [(e['user.id'], e['source.user_id']) for e in entries] == [(1, 10), (2, 11)]
    assert [row.get('user.id') for row in job.state.rows] == [1, 2]


def test_single_phase_preview(migration):
    config = migration(USERS_JOB)
    job = PipelineJob(config, config.find_job('users')).process(PhaseType.EXTRACT)

    assert job.status == JobStatus.EXTRACT_RUNNING
    assert job.state.rows[0].get('source.display_name') == 'Ada'
    assert job.state.rows[0].get('source.user_id') == 10

    job.process(PhaseType.TRANSFORM)
    assert job.state.rows[0].get('user.name') == 'Ada'
    assert job.result.rows_transformed == 2


def test_failed_phase_marks_the_job(migration):
    config = migration({'name': 'broken', 'extract': [{'type': 'csv', 'path': 'missing.csv'}]})
    job = PipelineJob(config, config.find_job('broken'))

    with pytest.raises(ReadError):
        job.run()

    assert job.status == JobStatus.FAILED
    assert job.result.errors[0].phase == 'extract'
    assert job.result.errors[0].error_type == 'ReadError'
    assert job.result.end_time is not None


def test_missing_dependency_ledger_is_a_warning(migration, caplog):
    config = migration(USERS_JOB, {'name': 'posts', 'depends_on': ['users']})
    job = PipelineJob(config, config.find_job('posts'))

    with caplog.at_level("WARNING", logger="batchflow"):
        assert job.load_dependencies() == []

    assert "depends on 'users' but no ledger was found" in caplog.text


def test_required_dependency_ledger_must_exist(migration):
    config = migration(USERS_JOB, {'name': 'posts', 'depends_on': ['users'], 'requires_dependency_data': True})
    job = PipelineJob(config, config.find_job('posts'))

    with pytest.raises(MissingDependencyData):
        job.run()
    assert job.status == JobStatus.FAILED


def test_dependencies_are_unloaded_after_each_phase(migration):
    config = migration(USERS_JOB, POSTS_JOB)
    registry = LedgerRegistry(config)
    PipelineJob(config, config.find_job('users'), registry).run()

    posts = PipelineJob(config, config.find_job('posts'), registry)
    posts.process(PhaseType.EXTRACT)

    assert not registry.is_loaded('users')
    assert posts.load_dependencies() == ['users']
    assert registry.is_loaded('users')
    posts.unload_dependencies()
    assert not registry.is_loaded('users')


def test_loader_errors_are_reported_on_the_result(migration):
    config = migration({
        'name': 'notes',
        'extract': [{'type': 'csv', 'path': 'users.csv'}],
        'load': [{'type': 'custom', 'class': 'tests.helpers.MemoryLoader', 'name': 'mem',
                  'fail_on': '*', 'error': 'recoverable'}],
    })

    result = PipelineJob(config, config.find_job('notes')).run()

    assert result.status == JobStatus.DONE
    assert result.errors[0].loader == 'mem'
    assert result.errors[0].recoverable is True
    assert "destination busy" in result.errors[0].message


# Pipeline

def test_pipeline_resolves_cross_job_references(migration, tmp_path):
    config = migration(USERS_JOB, POSTS_JOB)

    results = Pipeline(config).run()

    assert [(r.name, r.status) for r in results] == [('users', JobStatus.DONE), ('posts', JobStatus.DONE)]
    posts = results[1]
    assert (posts.rows_extracted, posts.rows_transformed, posts.rows_loaded) == (3, 2, 2)

    with sqlite3.connect(str(tmp_path / "site.db")) as conn:
        stored = conn.execute('SELECT title, author_id FROM posts ORDER BY id').fetchall()
    assert stored == [('Hello', 1), ('Again', 2)]

    ledger_names = sorted(p.split('/')[-1].split('-ledger-')[0] for p in posts.ledger_paths)
    assert ledger_names == ['posts', 'posts.export', 'posts.posts_db']

    joined = read_ledger(next(p for p in posts.ledger_paths if '/posts-ledger-' in p))
    assert [e['post.id'] for e in joined] == [1, 2]
    assert [e['source.id'] for e in joined] == [1, 2]
    assert [e['export.record'] for e in joined] == [1, 2]

    exported = json.loads((tmp_path / "posts.json").read_text())
    assert exported[0] == {'id': 1, 'title': 'Hello', 'author_id': 1}


def test_registry_is_cleared_between_jobs(migration):
    config = migration(USERS_JOB, POSTS_JOB)
    pipeline = Pipeline(config)

    pipeline.run()

    assert pipeline.registry.loaded() == []


def test_dry_run_runs_nothing(migration, tmp_path, caplog):
    config = migration(USERS_JOB, POSTS_JOB)

    with caplog.at_level("INFO", logger="batchflow"):
        results = Pipeline(config).run(dry_run=True)

    assert [r.status for r in results] == [JobStatus.BUILT, JobStatus.BUILT]
    assert "[dry run] 2. posts (depends on users)" in caplog.text
    assert not (tmp_path / "site.db").exists()


def test_only_and_skip_filters(migration):
    config = migration(USERS_JOB, POSTS_JOB, {'name': 'extra', 'skip': True})
    pipeline = Pipeline(config)

    assert [j.name for j in pipeline.plan()] == ['users', 'posts']
    assert [j.name for j in pipeline.plan(only=['posts'])] == ['posts']
    assert [j.name for j in pipeline.plan(skip=['posts'])] == ['users']

    with pytest.raises(ConfigurationError, match="ghost"):
        pipeline.plan(only=['ghost'])


def test_dependents_of_a_failed_job_are_skipped(migration):
    broken_users = dict(USERS_JOB, extract=[{'type': 'csv', 'path': 'missing.csv'}])
    config = migration(broken_users, POSTS_JOB, {'name': 'independent'})

    results = Pipeline(config).run()

    statuses = {r.name: r.status for r in results}
    assert statuses == {
        'users': JobStatus.FAILED,
        'posts': JobStatus.SKIPPED,
        'independent': JobStatus.DONE,
    }
    skipped = next(r for r in results if r.name == 'posts')
    assert skipped.errors[0].error_type == 'DependencyFailed'


def test_fatal_error_aborts_the_run(migration):
    config = migration(
        {
            'name': 'first',
            'extract': [{'type': 'csv', 'path': 'users.csv'}],
            'load': [{'type': 'custom', 'class': 'tests.helpers.MemoryLoader',
                      'fail_on': '*', 'error': 'fatal'}],
        },
        {'name': 'second'},
    )
    pipeline = Pipeline(config)

    with pytest.raises(FatalPipelineError):
        pipeline.run()

    assert [(r.name, r.status) for r in pipeline.results] == [('first', JobStatus.FAILED)]


def test_fatal_error_survives_a_failing_ledger_write(make_config, caplog):
    config = make_config(migration=[{
        'name': 'posts',
        'load': [{
            'type': 'custom', 'class': 'tests.helpers.MemoryLoader',
            'fail_on': ['r2'], 'error': 'fatal',
            'ledger': {'schema': {'post.id': {'type': 'integer', 'nullable': False}}},
        }],
    }])
    processor = LoadOrchestrator(config, config.find_job('posts'))

    with caplog.at_level("ERROR", logger="batchflow"):
        with pytest.raises(FatalPipelineError):
            processor.process(PipelineState(rows=make_rows(2)))

    assert "cleanup after the fatal error failed" in caplog.text


def test_cycles_always_abort(migration):
    config = migration(
        {'name': 'a', 'depends_on': ['b']},
        {'name': 'b', 'depends_on': ['a']},
        pipeline={'strict_dependencies': False},
    )
    with pytest.raises(DependencyValidationError):
        Pipeline(config).run()


def test_strict_dependencies_abort_on_unknown_jobs(migration):
    config = migration({'name': 'a', 'depends_on': ['ghost']}, {'name': 'b'})
    with pytest.raises(DependencyValidationError):
        Pipeline(config).run()


def test_lenient_dependencies_exclude_offending_jobs(migration, caplog):
    config = migration(
        {'name': 'a', 'depends_on': ['ghost']},
        {'name': 'b', 'depends_on': ['a']},
        {'name': 'c'},
        pipeline={'strict_dependencies': False},
    )

    with caplog.at_level("WARNING", logger="batchflow"):
        results = Pipeline(config).run()

    assert [r.name for r in results] == ['c']
    assert "Excluding job 'a'" in caplog.text
    assert "Excluding job 'b'" in caplog.text
