import pytest

from external_services import VaultError
from mock_external_services import MockExternalServices
from util import Logger
from vault_identity_group import IdentityGroupReconciler, GroupRecord, GroupKind, GroupErrorKind, \
    RemoteWriteError, RemoteReadError, RemoteDeleteError, MalformedResponseError


def expired_credential_error(method: str, path: str) -> VaultError:
    return VaultError(method=method, path=path, status_code=403, errors=['invalid accessor custom_accessor_value'])


def new_reconciler(svc: MockExternalServices) -> IdentityGroupReconciler:
    return IdentityGroupReconciler(svc=svc, logger=Logger(verbose=True))


def existing_group(group_id: str = 'abc', name: str = 'g1', **fields) -> dict:
    group = {'id': group_id, 'name': name, 'type': 'internal', 'metadata': None, 'policies': [],
             'member_group_ids': [], 'member_entity_ids': []}
    group.update(fields)
    return group


@pytest.mark.parametrize("name", ["g1", "ops-team", "with space"])
@pytest.mark.parametrize("kind", [GroupKind.INTERNAL, GroupKind.EXTERNAL])
def test_create_then_read_keeps_name_and_kind(name: str, kind: GroupKind):
    svc = MockExternalServices()
    reconciler = new_reconciler(svc)

    group_id = reconciler.create(GroupRecord(name=name, kind=kind))

    record = GroupRecord(name='', id=group_id)
    assert reconciler.read(record) is record
    assert record.name == name
    assert record.kind == kind


def test_create_omits_absent_optional_fields():
    svc = MockExternalServices()
    record = GroupRecord(name='g1')

    new_reconciler(svc).create(record)

    assert svc.calls[0] == ('PUT', '/identity/group', {'name': 'g1', 'type': 'internal'})
    assert record.id == 'id-g1'
    assert svc.paths_called('GET') == ['/identity/group/id/id-g1']


def test_create_sends_present_fields_including_empty_ones():
    svc = MockExternalServices()
    record = GroupRecord(name='g1', kind=GroupKind.EXTERNAL, metadata={'team': 'ops'}, policies=[],
                         member_entity_ids=['e1', 'e2'])

    new_reconciler(svc).create(record)

    assert svc.calls[0][2] == {'name': 'g1', 'type': 'external', 'metadata': {'team': 'ops'}, 'policies': [],
                               'member_entity_ids': ['e1', 'e2']}


def test_create_write_error():
    cause = VaultError(method='PUT', path='/identity/group', status_code=500, errors=['internal error'])
    svc = MockExternalServices(errors={('PUT', '/identity/group'): cause})
    record = GroupRecord(name='g1')

    with pytest.raises(RemoteWriteError, match=r"create of identity group 'g1' failed") as exc_info:
        new_reconciler(svc).create(record)
    assert exc_info.value.kind == GroupErrorKind.REMOTE_WRITE
    assert exc_info.value.key == 'g1'
    assert exc_info.value.operation == 'create'
    assert exc_info.value.cause is cause
    assert exc_info.value.__cause__ is cause
    assert record.id is None


@pytest.mark.parametrize("create_response", [None, {}, {'data': None}, {'data': {'name': 'g1'}}, {'data': {'id': ''}}])
def test_create_response_without_id(create_response):
    svc = MockExternalServices(create_response=create_response)
    record = GroupRecord(name='g1')

    with pytest.raises(MalformedResponseError) as exc_info:
        new_reconciler(svc).create(record)
    assert exc_info.value.kind == GroupErrorKind.MALFORMED_RESPONSE
    assert record.id is None
    assert svc.paths_called('GET') == []


def test_update_sends_only_present_fields():
    svc = MockExternalServices(groups={'abc': existing_group(policies=['p1'])})
    record = GroupRecord(name='g1', id='abc', metadata={'team': 'ops'})

    new_reconciler(svc).update(record)

    assert svc.calls[0] == ('PUT', '/identity/group/id/abc', {'metadata': {'team': 'ops'}})
    assert svc.groups['abc']['policies'] == ['p1']
    assert svc.groups['abc']['metadata'] == {'team': 'ops'}
    assert record.metadata == {'team': 'ops'}


def test_update_never_sends_name_or_type():
    svc = MockExternalServices(groups={'abc': existing_group()})
    record = GroupRecord(name='renamed', kind=GroupKind.EXTERNAL, id='abc', policies=['p2'])

    new_reconciler(svc).update(record)

    assert svc.calls[0][2] == {'policies': ['p2']}
    assert svc.groups['abc']['name'] == 'g1'
    assert svc.groups['abc']['type'] == 'internal'


def test_update_write_error():
    cause = VaultError(method='PUT', path='/identity/group/id/abc', status_code=400, errors=['bad request'])
    svc = MockExternalServices(groups={'abc': existing_group()}, errors={('PUT', '/identity/group/id/abc'): cause})

    with pytest.raises(RemoteWriteError) as exc_info:
        new_reconciler(svc).update(GroupRecord(name='g1', id='abc', policies=['p1']))
    assert exc_info.value.operation == 'update'
    assert exc_info.value.key == 'abc'


def test_read_refreshes_computed_fields():
    svc = MockExternalServices(groups={'abc': existing_group(type='external', metadata={'k': 'v'},
                                                             member_group_ids=['g2'], member_entity_ids=['e1'])})
    record = GroupRecord(name='stale', id='abc')

    new_reconciler(svc).read(record)

    assert record.name == 'g1'
    assert record.kind == GroupKind.EXTERNAL
    assert record.metadata == {'k': 'v'}
    assert record.member_group_ids == ['g2']
    assert record.member_entity_ids == ['e1']


def test_read_does_not_refresh_policies():
    # policies are authoritative from the local record, whatever Vault reports
    svc = MockExternalServices(groups={'abc': existing_group(policies=['remote'])})
    record = GroupRecord(name='g1', id='abc', policies=['local'])

    new_reconciler(svc).read(record)

    assert record.policies == ['local']


def test_read_absent_clears_id():
    svc = MockExternalServices()
    record = GroupRecord(name='g1', id='abc', policies=['p1'])

    assert new_reconciler(svc).read(record) is None
    assert record.id is None
    assert record.name == 'g1'
    assert record.policies == ['p1']


def test_read_expired_credential_leaves_record_untouched():
    svc = MockExternalServices(groups={'abc': existing_group(name='remote-name')},
                               errors={('GET', '/identity/group/id/abc'):
                                       expired_credential_error('GET', '/identity/group/id/abc')})
    record = GroupRecord(name='g1', id='abc', metadata={'k': 'v'}, policies=['p1'], member_entity_ids=['e1'])

    assert new_reconciler(svc).read(record) is None
    assert record.to_state() == {'id': 'abc', 'name': 'g1', 'type': 'internal', 'metadata': {'k': 'v'},
                                 'policies': ['p1'], 'member_entity_ids': ['e1']}


def test_read_error():
    cause = VaultError(method='GET', path='/identity/group/id/abc', status_code=403, errors=['permission denied'])
    svc = MockExternalServices(errors={('GET', '/identity/group/id/abc'): cause})
    record = GroupRecord(name='g1', id='abc')

    with pytest.raises(RemoteReadError) as exc_info:
        new_reconciler(svc).read(record)
    assert exc_info.value.kind == GroupErrorKind.REMOTE_READ
    assert exc_info.value.cause is cause
    assert record.id == 'abc'


def test_read_malformed_group_data():
    svc = MockExternalServices(groups={'abc': existing_group(type='bogus')})

    with pytest.raises(MalformedResponseError):
        new_reconciler(svc).read(GroupRecord(name='g1', id='abc'))


def test_exists_without_id_probes_name_path():
    svc = MockExternalServices(groups={'abc': existing_group()})

    assert new_reconciler(svc).exists(GroupRecord(name='g1'))
    assert svc.paths_called() == ['/identity/group/name/g1']


def test_exists_with_id_probes_id_path():
    svc = MockExternalServices(groups={'abc': existing_group()})
    reconciler = new_reconciler(svc)

    assert reconciler.exists(GroupRecord(name='g1', id='abc'))
    assert not reconciler.exists(GroupRecord(name='g1', id='other'))
    assert svc.paths_called() == ['/identity/group/id/abc', '/identity/group/id/other']


def test_exists_missing_by_name():
    svc = MockExternalServices(groups={'abc': existing_group()})
    assert not new_reconciler(svc).exists(GroupRecord(name='g2'))


def test_exists_error():
    path = '/identity/group/name/g1'
    svc = MockExternalServices(errors={('GET', path): VaultError(method='GET', path=path, message='refused')})

    with pytest.raises(RemoteReadError) as exc_info:
        new_reconciler(svc).exists(GroupRecord(name='g1'))
    assert exc_info.value.exists_guess is True
    assert exc_info.value.key == 'g1'
    assert exc_info.value.operation == 'exists'


def test_delete_then_read_is_absent():
    svc = MockExternalServices(groups={'abc': existing_group()})
    reconciler = new_reconciler(svc)
    record = GroupRecord(name='g1', id='abc')

    reconciler.delete(record)
    assert record.id is None
    assert 'abc' not in svc.groups

    record.id = 'abc'
    assert reconciler.read(record) is None
    assert record.id is None


def test_delete_error():
    path = '/identity/group/id/abc'
    svc = MockExternalServices(groups={'abc': existing_group()},
                               errors={('DELETE', path): VaultError(method='DELETE', path=path, status_code=500)})
    record = GroupRecord(name='g1', id='abc')

    with pytest.raises(RemoteDeleteError) as exc_info:
        new_reconciler(svc).delete(record)
    assert exc_info.value.kind == GroupErrorKind.REMOTE_DELETE
    assert record.id == 'abc'


def test_adopt_resolves_id_by_name():
    svc = MockExternalServices(groups={'abc': existing_group()})
    reconciler = new_reconciler(svc)

    record = GroupRecord(name='g1')
    assert reconciler.adopt(record)
    assert record.id == 'abc'

    missing = GroupRecord(name='g2')
    assert not reconciler.adopt(missing)
    assert missing.id is None


def test_create_then_read_scenario():
    svc = MockExternalServices(id_factory=lambda name: 'abc')
    reconciler = new_reconciler(svc)
    record = GroupRecord(name='g1', kind=GroupKind.INTERNAL, policies=['p1'])

    assert reconciler.create(record) == 'abc'
    assert svc.calls[0] == ('PUT', '/identity/group', {'name': 'g1', 'type': 'internal', 'policies': ['p1']})
    assert record.to_state() == {'id': 'abc', 'name': 'g1', 'type': 'internal', 'policies': ['p1'],
                                 'member_group_ids': [], 'member_entity_ids': []}
