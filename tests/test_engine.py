"""Tests for the lifecycle engine."""

import threading
from typing import List, Optional

import pytest
from botocore.exceptions import EndpointConnectionError
from pydantic import BaseModel, ConfigDict, Field

from cloudplane.config.models import DataSourceConfig, ResourceConfig
from cloudplane.engine import DriftType, ExecutionStatus, LifecycleEngine, resources_from_config
from cloudplane.resources.base import BaseDataSource, BaseResourceHandler, ChangeType, Resource
from cloudplane.state.manager import StateManager
from cloudplane.utils.errors import (
    ProviderError,
    ProvisioningError,
    ResourceNotFoundError,
    StateError,
    ValidationError,
    WaitCancelledError,
    WaitTimeoutError,
)


class ItemProperties(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='forbid')

    name: str = Field(..., alias='Name')
    size: int = Field(1, alias='Size')


class ItemHandler(BaseResourceHandler):
    """In-memory handler keyed by Name."""

    type_name = 'Test::Item'
    display_name = 'Test Item'
    properties_model = ItemProperties
    force_new_properties = ('Name',)

    def __init__(self):
        super().__init__(client_manager=None)
        self.remote = {}
        self.calls = []
        self.fail_on = set()
        # Created remotely, then the follow-up wait raises this error
        self.fail_after_create = {}
        self.raise_on = {}

    def _resource(self, resource_id: str, name: str) -> Resource:
        properties, tags = self.remote[name]
        return Resource(id=resource_id, type=self.type_name, physical_id=name,
                        properties=dict(properties), tags=dict(tags))

    def create(self, resource: Resource) -> Resource:
        self.calls.append(('create', resource.id))
        if resource.id in self.fail_on:
            raise ProvisioningError(f"creating {resource.id}")
        if resource.id in self.raise_on:
            raise self.raise_on[resource.id]
        name = resource.properties['Name']
        self.remote[name] = (dict(resource.properties), dict(resource.tags))
        if resource.id in self.fail_after_create:
            resource.physical_id = name
            raise self.fail_after_create[resource.id]
        return self._resource(resource.id, name)

    def read(self, resource: Resource) -> Optional[Resource]:
        if resource.physical_id not in self.remote:
            return None
        return self._resource(resource.id, resource.physical_id)

    def update(self, desired: Resource, current: Resource, changes: List[str]) -> Resource:
        self.calls.append(('update', desired.id))
        self.remote[current.physical_id] = (dict(desired.properties), dict(desired.tags))
        return self._resource(desired.id, current.physical_id)

    def destroy(self, resource: Resource) -> None:
        self.calls.append(('delete', resource.id))
        self.remote.pop(resource.physical_id, None)


class StaticDataSource(BaseDataSource):
    type_name = 'Test::Lookup'

    def __init__(self):
        super().__init__(client_manager=None)

    def read(self, source_id, properties):
        return Resource(id=source_id, type=self.type_name, physical_id='x',
                        properties={'Echo': properties.get('Value')})


def item(resource_id, name=None, size=1, tags=None):
    return Resource(id=resource_id, type=ItemHandler.type_name,
                    properties={'Name': name or resource_id, 'Size': size}, tags=tags or {})


@pytest.fixture
def handler():
    return ItemHandler()


@pytest.fixture
def state_manager(tmp_path):
    return StateManager(str(tmp_path / 'state.json'))


@pytest.fixture
def engine(handler, state_manager):
    return LifecycleEngine(
        handlers={handler.type_name: handler},
        state_manager=state_manager,
        region='us-west-2',
        data_sources={StaticDataSource.type_name: StaticDataSource()},
    )


def apply(engine, resources):
    return engine.apply(engine.plan(resources))


class TestPlanAndApply:
    def test_create_then_no_change(self, engine, state_manager):
        plans = engine.plan([item('a'), item('b')])
        assert [p.change_type for p in plans] == [ChangeType.CREATE, ChangeType.CREATE]

        result = engine.apply(plans)

        assert result.is_success()
        assert len(result.succeeded) == 2
        saved = state_manager.load()
        assert set(saved.resources) == {'a', 'b'}
        assert saved.get_resource('a').physical_id == 'a'

        again = engine.plan([item('a'), item('b')])
        assert [p.change_type for p in again] == [ChangeType.NO_CHANGE, ChangeType.NO_CHANGE]

    def test_no_change_is_skipped(self, engine, handler):
        apply(engine, [item('a')])
        handler.calls.clear()

        result = apply(engine, [item('a')])

        assert result.results[0].status == ExecutionStatus.SKIPPED
        assert handler.calls == []

    def test_update(self, engine, handler, state_manager):
        apply(engine, [item('a')])

        plans = engine.plan([item('a', size=3)])
        assert plans[0].change_type == ChangeType.UPDATE
        assert plans[0].changes == ['Size']

        engine.apply(plans)

        assert handler.calls[-1] == ('update', 'a')
        assert state_manager.load().get_resource('a').properties['Size'] == 3

    def test_force_new_property_replaces(self, engine, handler):
        apply(engine, [item('a')])

        plans = engine.plan([item('a', name='renamed')])
        assert plans[0].change_type == ChangeType.REPLACE

        engine.apply(plans)

        assert handler.calls[-2:] == [('delete', 'a'), ('create', 'a')]
        assert 'renamed' in handler.remote and 'a' not in handler.remote

    def test_removed_resources_are_deleted(self, engine, handler, state_manager):
        apply(engine, [item('a'), item('b')])

        plans = engine.plan([item('a')])

        assert [(p.resource.id, p.change_type) for p in plans] == [
            ('a', ChangeType.NO_CHANGE), ('b', ChangeType.DELETE),
        ]
        engine.apply(plans)
        assert set(state_manager.load().resources) == {'a'}
        assert 'b' not in handler.remote

    def test_vanished_resource_is_recreated(self, engine, handler):
        apply(engine, [item('a')])
        handler.remote.clear()

        assert engine.plan([item('a')])[0].change_type == ChangeType.CREATE

    def test_failure_does_not_stop_other_resources(self, engine, handler, state_manager):
        handler.fail_on.add('a')

        result = apply(engine, [item('a'), item('b')])

        assert not result.is_success()
        assert [r.resource_id for r in result.failed] == ['a']
        assert isinstance(result.failed[0].error, ProvisioningError)
        assert set(state_manager.load().resources) == {'b'}

    def test_unexpected_exception_is_wrapped(self, engine, handler, state_manager):
        cause = EndpointConnectionError(endpoint_url='https://networkmonitor.us-west-2.amazonaws.com')
        handler.raise_on['a'] = cause

        result = apply(engine, [item('a'), item('b')])

        assert [r.resource_id for r in result.failed] == ['a']
        error = result.failed[0].error
        assert isinstance(error, ProviderError)
        assert error.cause is cause
        assert error.context.resource_id == 'a'
        assert error.context.operation == 'create'
        assert ('create', 'b') in handler.calls
        assert set(state_manager.load().resources) == {'b'}

    def test_created_but_unfinished_resource_is_kept(self, engine, handler, state_manager):
        handler.fail_after_create['a'] = WaitTimeoutError("timeout while waiting for state to become 'ACTIVE'")

        result = apply(engine, [item('a')])

        assert [r.resource_id for r in result.failed] == ['a']
        assert state_manager.load().get_resource('a').physical_id == 'a'

        del handler.fail_after_create['a']
        handler.calls.clear()
        again = engine.plan([item('a')])

        assert again[0].change_type == ChangeType.NO_CHANGE
        engine.apply(again)
        assert handler.calls == []

    def test_failure_before_create_call_keeps_nothing(self, engine, handler, state_manager):
        handler.fail_on.add('a')

        apply(engine, [item('a')])

        assert state_manager.load().resources == {}

    def test_unsupported_type(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            engine.plan([Resource(id='x', type='AWS::Nope', properties={})])
        assert "Supported types: Test::Item" in exc_info.value.suggestions[0]

    def test_invalid_properties(self, engine):
        with pytest.raises(ValidationError):
            engine.plan([Resource(id='x', type=ItemHandler.type_name, properties={'Size': 2})])


class TestCancellation:
    def test_handlers_share_the_engine_event(self, handler, state_manager):
        event = threading.Event()

        engine = LifecycleEngine(handlers={handler.type_name: handler}, state_manager=state_manager,
                                 region='us-west-2', cancel_event=event)

        assert engine.cancel_event is event
        assert handler.cancel_event is event

    def test_cancel_skips_remaining_plans(self, engine, handler, state_manager):
        plans = engine.plan([item('a'), item('b')])
        engine.cancel()

        result = engine.apply(plans)

        assert [r.status for r in result.results] == [ExecutionStatus.CANCELLED, ExecutionStatus.CANCELLED]
        assert not result.is_success()
        assert handler.calls == []
        assert state_manager.load().resources == {}

    def test_cancelled_wait_is_reported_as_cancelled(self, engine, handler, state_manager):
        handler.fail_after_create['a'] = WaitCancelledError("cancelled while waiting for state to become 'ACTIVE'")

        result = apply(engine, [item('a'), item('b')])

        assert [r.resource_id for r in result.cancelled] == ['a']
        assert result.failed == []
        assert not result.is_success()
        assert set(state_manager.load().resources) == {'a', 'b'}


class TestDestroy:
    def test_destroy_all_newest_first(self, engine, handler, state_manager):
        apply(engine, [item('a'), item('b')])
        handler.calls.clear()

        result = engine.destroy()

        assert result.is_success()
        assert handler.calls == [('delete', 'b'), ('delete', 'a')]
        assert state_manager.load().resources == {}

    def test_destroy_selected(self, engine, handler, state_manager):
        apply(engine, [item('a'), item('b')])

        engine.destroy(['a'])

        assert set(state_manager.load().resources) == {'b'}

    def test_destroy_unknown(self, engine):
        with pytest.raises(StateError):
            engine.destroy(['ghost'])


class TestImport:
    def test_import(self, engine, handler, state_manager):
        handler.remote['existing'] = ({'Name': 'existing', 'Size': 5}, {})

        resource = engine.import_resource(ItemHandler.type_name, 'existing', 'mine')

        assert resource.id == 'mine'
        assert state_manager.load().get_resource('mine').physical_id == 'existing'
        assert engine.plan([item('mine', name='existing', size=5)])[0].change_type == ChangeType.NO_CHANGE

    def test_import_defaults_logical_id(self, engine, handler):
        handler.remote['existing'] = ({'Name': 'existing', 'Size': 1}, {})
        assert engine.import_resource(ItemHandler.type_name, 'existing').id == 'existing'

    def test_import_missing(self, engine):
        with pytest.raises(ResourceNotFoundError):
            engine.import_resource(ItemHandler.type_name, 'ghost')

    def test_import_duplicate(self, engine, handler):
        apply(engine, [item('a')])
        handler.remote['other'] = ({'Name': 'other', 'Size': 1}, {})

        with pytest.raises(StateError):
            engine.import_resource(ItemHandler.type_name, 'other', 'a')


class TestRefreshAndDrift:
    def test_refresh_drops_vanished(self, engine, handler, state_manager):
        apply(engine, [item('a'), item('b')])
        del handler.remote['a']
        handler.remote['b'] = ({'Name': 'b', 'Size': 9}, {})

        refreshed = engine.refresh()

        assert [r.id for r in refreshed] == ['b']
        saved = state_manager.load()
        assert set(saved.resources) == {'b'}
        assert saved.get_resource('b').properties['Size'] == 9

    def test_drift(self, engine, handler):
        apply(engine, [item('a'), item('b'), item('c', tags={'env': 'x'})])
        del handler.remote['a']
        handler.remote['b'] = ({'Name': 'b', 'Size': 4}, {})
        handler.remote['c'] = ({'Name': 'c', 'Size': 1}, {'env': 'y'})

        drift = engine.detect_drift([item('a'), item('b'), item('c', tags={'env': 'x'}), item('new')])

        by_id = {d.resource_id: d for d in drift}
        assert set(by_id) == {'a', 'b', 'c'}
        assert by_id['a'].drift_type == DriftType.MISSING
        assert by_id['b'].drift_type == DriftType.MODIFIED
        assert by_id['b'].differences == ['Size: expected 1, actual 4']
        assert by_id['c'].differences == ["Tags: expected {'env': 'x'}, actual {'env': 'y'}"]

    def test_no_drift(self, engine):
        apply(engine, [item('a')])
        assert engine.detect_drift([item('a')]) == []


class TestData:
    def test_read_data(self, engine):
        results = engine.read_data([
            DataSourceConfig(id='lookup', type='Test::Lookup', properties={'Value': 'v'}),
        ])
        assert results['lookup'].properties == {'Echo': 'v'}

    def test_unknown_data_source(self, engine):
        with pytest.raises(ProvisioningError):
            engine.read_data([DataSourceConfig(id='x', type='Test::Missing')])


class TestResourcesFromConfig:
    def test_converts_declarations(self):
        resources = resources_from_config([
            ResourceConfig(id='a', type='Test::Item', properties={'Name': 'a'}, tags={'k': 'v'}),
        ])
        assert resources == [Resource(id='a', type='Test::Item', properties={'Name': 'a'}, tags={'k': 'v'})]
