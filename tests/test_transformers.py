import pytest

from batchflow.adapters.registry import TRANSFORMERS
from batchflow.common.exceptions import ConfigurationError, TransformError
from batchflow.common.models import UID_FIELD, Ledger, Row
from batchflow.ledger.registry import LedgerRegistry
from batchflow.transformers import (
    CallableTransformer,
    ColumnRemover,
    ExplodeTransformer,
    LedgerLookupTransformer,
    NullRemover,
    RenameTransformer,
    SelectPrefixTransformer,
)


def row(**fields):
    return Row.create({k.replace('__', '.'): v for k, v in fields.items()}, uid='r1')


def add_slug(row, separator="-"):
    return {'post.slug': row.get('post.title', '').lower().replace(' ', separator)}


def test_rename_mapping_pattern_and_prefix():
    transformer = RenameTransformer(mapping={'name': 'title'}, pattern=r'\s+', replace='_', prefix='post')
    result = transformer.transform(Row.create({'name': 'Hello', 'created at': 1}, uid='r1'))

    assert result.to_dict() == {UID_FIELD: 'r1', 'post.title': 'Hello', 'post.created_at': 1}


def test_rename_collision_is_an_error():
    transformer = RenameTransformer(mapping={'a': 'b'})
    with pytest.raises(TransformError):
        transformer.transform(row(a=1, b=2))


def test_rename_needs_an_option():
    with pytest.raises(ConfigurationError):
        RenameTransformer.from_step({'type': 'rename'})


def test_select_prefix():
    result = SelectPrefixTransformer(prefix='post', remove_prefix=True).transform(
        row(post__title='Hello', post__id=1, user__id=2)
    )
    assert result.to_dict() == {UID_FIELD: 'r1', 'title': 'Hello', 'id': 1}


def test_null_remover_strategies():
    data = row(a='', b=None, c=1)

    assert set(NullRemover().transform(data).keys()) == {UID_FIELD, 'c'}
    assert NullRemover(strategy='drop').transform(data) is None
    assert NullRemover(strategy='fill', fill_value=0).transform(data).get('a') == 0
    assert NullRemover(strategy='set_null').transform(data).get('a') is None
    assert NullRemover(strategy='drop_all').transform(row(a='', b=None)) is None
    assert set(NullRemover(columns=['b']).transform(data).keys()) == {UID_FIELD, 'a', 'c'}


def test_null_remover_rejects_unknown_strategy():
    with pytest.raises(ValueError):
        NullRemover(strategy='guess')


def test_column_remover_keeps_uid():
    remover = ColumnRemover(prefix='source.', keep_columns=['source.id'], columns=['tmp'])
    result = remover.transform(row(source__id=1, source__raw='x', tmp=3, title='t'))

    assert set(result.keys()) == {UID_FIELD, 'source.id', 'title'}
    assert ColumnRemover(pattern='.*').transform(row(a=1)).keys() == [UID_FIELD]


def test_explode_splits_delimited_strings():
    result = ExplodeTransformer(columns='tags').transform(row(tags='news, intro,,'))
    assert result.get('tags') == ['news', 'intro']


def test_transform_batch_skips_failing_rows():
    transformer = RenameTransformer(mapping={'a': 'b'})
    rows = [Row.create({'a': 1}, uid='ok'), Row.create({'a': 1, 'b': 2}, uid='bad')]

    result = transformer.transform_batch(rows)

    assert [r.uid for r in result] == ['ok']
    assert transformer.get_stats()['errors'] == 1


def test_transform_batch_can_fail_fast():
    transformer = RenameTransformer(mapping={'a': 'b'}, error_handling='fail')
    with pytest.raises(TransformError):
        transformer.transform_batch([Row.create({'a': 1, 'b': 2}, uid='bad')])


def test_custom_function_from_registry():
    transformer = TRANSFORMERS.create(
        {'type': 'custom', 'callable': 'tests.test_transformers.add_slug', 'separator': '_'}
    )

    assert isinstance(transformer, CallableTransformer)
    assert transformer.transform(row(post__title='Hello World')).get('post.slug') == 'hello_world'


def test_custom_transformer_class_from_registry():
    transformer = TRANSFORMERS.create({
        'type': 'custom',
        'callable': 'batchflow.transformers.ExplodeTransformer',
        'columns': ['tags'],
    })
    assert isinstance(transformer, ExplodeTransformer)


def test_custom_callable_must_import():
    with pytest.raises(ConfigurationError):
        TRANSFORMERS.create({'type': 'custom', 'callable': 'tests.nowhere.func'})


# Ledger lookup

@pytest.fixture()
def users_registry(make_config):
    registry = LedgerRegistry(make_config(migration=[{'name': 'users'}]))
    registry.put('users', Ledger('users', [
        {'uid': 'u1', 'source.id': 10, 'user.id': 501},
        {'uid': 'u2', 'source.id': 11, 'user.id': 502},
    ]))
    return registry


def lookup_step(**options):
    step = {
        'type': 'ledger_lookup',
        'job': 'users',
        'match': {'source.id': 'post.author'},
        'fields': {'user.id': 'post.author_id'},
    }
    step.update(options)
    return step


def test_ledger_lookup_copies_fields(users_registry):
    transformer = TRANSFORMERS.create(lookup_step(), users_registry)
    transformer.setup()

    result = transformer.transform_batch([
        Row.create({'post.author': 10}, uid='p1'),
        Row.create({'post.author': 11}, uid='p2'),
    ])

    assert [r.get('post.author_id') for r in result] == [501, 502]


def test_ledger_lookup_missing_policies(users_registry):
    orphan = Row.create({'post.author': 99}, uid='p3')

    keep = TRANSFORMERS.create(lookup_step(), users_registry)
    assert keep.transform(orphan) is orphan

    drop = TRANSFORMERS.create(lookup_step(on_missing='drop'), users_registry)
    assert drop.transform(orphan) is None

    error = TRANSFORMERS.create(lookup_step(on_missing='error'), users_registry)
    with pytest.raises(TransformError):
        error.transform(orphan)


def test_ledger_lookup_needs_a_registry():
    with pytest.raises(ConfigurationError):
        LedgerLookupTransformer.from_step(lookup_step())


def test_ledger_lookup_validates_match(users_registry):
    with pytest.raises(ConfigurationError):
        TRANSFORMERS.create(lookup_step(match={'a': 'b', 'c': 'd'}), users_registry)
