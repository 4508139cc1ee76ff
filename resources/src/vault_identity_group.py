#!/usr/bin/env python3

import json
import sys
from enum import Enum, auto, unique
from typing import Any, Mapping, MutableMapping, MutableSequence, Sequence, Union
from urllib.parse import quote

from dresources import DAction, action
from dresources_util import collect_differences
from external_services import ExternalServices, VaultError
from util import Logger, UserError
from vault import VaultResource

IDENTITY_GROUP_PATH = '/identity/group'

# optional attributes, sent to Vault only when present in the record
OPTIONAL_FIELDS = ('metadata', 'policies', 'member_group_ids', 'member_entity_ids')

# attributes refreshed from Vault on read; 'policies' stays authoritative from the local record
REFRESHED_FIELDS = ('metadata', 'member_entity_ids', 'member_group_ids')


def identity_group_id_path(group_id: str) -> str:
    return f"{IDENTITY_GROUP_PATH}/id/{quote(group_id, safe='')}"


def identity_group_name_path(name: str) -> str:
    return f"{IDENTITY_GROUP_PATH}/name/{quote(name, safe='')}"


@unique
class GroupKind(Enum):
    INTERNAL = 'internal'
    EXTERNAL = 'external'


@unique
class GroupErrorKind(Enum):
    REMOTE_WRITE = auto()
    REMOTE_READ = auto()
    REMOTE_DELETE = auto()
    MALFORMED_RESPONSE = auto()


class IdentityGroupError(Exception):
    """Failure of a remote identity group operation.

    Carries the operation that failed, the key the group was addressed by (its ID, or its name before an ID is
    known), and the underlying cause, if any."""

    kind: GroupErrorKind = None

    def __init__(self, operation: str, key: str, cause: Exception = None, message: str = None) -> None:
        self.operation: str = operation
        self.key: str = key
        self.cause: Exception = cause
        super().__init__(f"{operation} of identity group '{key}' failed: {message if message else cause}")


class RemoteWriteError(IdentityGroupError):
    kind = GroupErrorKind.REMOTE_WRITE


class RemoteReadError(IdentityGroupError):
    kind = GroupErrorKind.REMOTE_READ

    def __init__(self, operation: str, key: str, cause: Exception = None, message: str = None,
                 exists_guess: bool = False) -> None:
        super().__init__(operation=operation, key=key, cause=cause, message=message)
        self.exists_guess: bool = exists_guess


class RemoteDeleteError(IdentityGroupError):
    kind = GroupErrorKind.REMOTE_DELETE


class MalformedResponseError(IdentityGroupError):
    kind = GroupErrorKind.MALFORMED_RESPONSE


class GroupRecord:
    """An identity group, as tracked locally.

    Optional attributes are either absent (None) or present; a present empty collection is still sent to Vault, which
    is how a list or map is cleared."""

    def __init__(self,
                 name: str,
                 kind: GroupKind = GroupKind.INTERNAL,
                 id: str = None,
                 metadata: Mapping[str, str] = None,
                 policies: Sequence[str] = None,
                 member_group_ids: Sequence[str] = None,
                 member_entity_ids: Sequence[str] = None) -> None:
        super().__init__()
        self.id: str = id
        self.name: str = name
        self.kind: GroupKind = kind
        self.metadata: Mapping[str, str] = metadata
        self.policies: Sequence[str] = policies
        self.member_group_ids: Sequence[str] = member_group_ids
        self.member_entity_ids: Sequence[str] = member_entity_ids

    @staticmethod
    def from_config(config: Mapping[str, Any]) -> 'GroupRecord':
        return GroupRecord(
            name=config['name'],
            kind=GroupKind(config['type']) if 'type' in config else GroupKind.INTERNAL,
            metadata=dict(config['metadata']) if 'metadata' in config else None,
            policies=list(config['policies']) if 'policies' in config else None,
            member_group_ids=list(config['member_group_ids']) if 'member_group_ids' in config else None,
            member_entity_ids=list(config['member_entity_ids']) if 'member_entity_ids' in config else None)

    @staticmethod
    def from_state(state: Mapping[str, Any]) -> 'GroupRecord':
        record = GroupRecord.from_config(state)
        record.id = state['id'] if 'id' in state else None
        return record

    def optional_fields(self) -> MutableMapping[str, Any]:
        """The optional attributes present in this record, by their Vault name."""
        return {field: getattr(self, field) for field in OPTIONAL_FIELDS if getattr(self, field) is not None}

    def to_state(self) -> dict:
        state: dict = {'name': self.name, 'type': self.kind.value}
        if self.id: state['id'] = self.id
        state.update(self.optional_fields())
        return state


class IdentityGroupReconciler:
    """Maps a group record onto Vault's identity store.

    Operations mutate the given record in place: 'create' sets its ID, reads refresh its computed attributes, and a
    read that finds nothing clears its ID, signalling that the group is gone."""

    def __init__(self, svc: ExternalServices, logger: Logger = None) -> None:
        super().__init__()
        self._svc: ExternalServices = svc
        self._logger: Logger = logger if logger is not None else Logger()

    def create(self, record: GroupRecord) -> str:
        payload: MutableMapping[str, Any] = {'name': record.name, 'type': record.kind.value}
        payload.update(record.optional_fields())

        try:
            response = self._svc.write_vault_path(IDENTITY_GROUP_PATH, payload)
        except VaultError as e:
            raise RemoteWriteError(operation='create', key=record.name, cause=e) from e
        self._logger.debug(f"Wrote identity group '{record.name}'")

        data = response['data'] if response and 'data' in response else None
        if not data or not data.get('id'):
            raise MalformedResponseError(operation='create', key=record.name,
                                         message=f"response from '{IDENTITY_GROUP_PATH}' carries no group ID")

        group_id: str = data['id']
        record.id = group_id
        self.read(record)
        return group_id

    def update(self, record: GroupRecord) -> None:
        path = identity_group_id_path(record.id)
        self._logger.debug(f"Updating identity group '{record.id}'")
        try:
            self._svc.write_vault_path(path, record.optional_fields())
        except VaultError as e:
            raise RemoteWriteError(operation='update', key=record.id, cause=e) from e
        self._logger.debug(f"Updated identity group '{record.id}'")
        self.read(record)

    def read(self, record: GroupRecord) -> Union[None, GroupRecord]:
        """Refreshes the record from Vault.

        Returns None when nothing was refreshed: either the group is gone (the record's ID is cleared), or the
        credential used has expired (the record is left untouched)."""
        group_id: str = record.id
        path = identity_group_id_path(group_id)

        self._logger.debug(f"Reading identity group '{group_id}' from '{path}'")
        try:
            response = self._svc.read_vault_path(path)
        except VaultError as e:
            if e.expired_credential:
                self._logger.debug(f"Credential expired while reading identity group '{group_id}', state unchanged")
                return None
            raise RemoteReadError(operation='read', key=group_id, cause=e) from e

        data = response['data'] if response and 'data' in response else None
        if not data:
            self._logger.warn(f"Identity group '{group_id}' not found, removing from state")
            record.id = None
            return None
        self._logger.debug(f"Read identity group '{group_id}'")

        try:
            record.name = data['name']
            record.kind = GroupKind(data['type'])
        except (KeyError, ValueError) as e:
            raise MalformedResponseError(operation='read', key=group_id, cause=e,
                                         message=f"unexpected group data: {e}") from e
        for field in REFRESHED_FIELDS:
            setattr(record, field, data[field] if field in data else None)
        return record

    def delete(self, record: GroupRecord) -> None:
        group_id: str = record.id
        self._logger.debug(f"Deleting identity group '{group_id}'")
        try:
            self._svc.delete_vault_path(identity_group_id_path(group_id))
        except VaultError as e:
            raise RemoteDeleteError(operation='delete', key=group_id, cause=e) from e
        self._logger.debug(f"Deleted identity group '{group_id}'")
        record.id = None

    def exists(self, record: GroupRecord) -> bool:
        if record.id:
            key, path = record.id, identity_group_id_path(record.id)
        else:
            key, path = record.name, identity_group_name_path(record.name)

        self._logger.debug(f"Checking if identity group '{key}' exists")
        try:
            response = self._svc.read_vault_path(path)
        except VaultError as e:
            raise RemoteReadError(operation='exists', key=key, cause=e, exists_guess=True) from e
        self._logger.debug(f"Checked if identity group '{key}' exists")
        return bool(response and response.get('data'))

    def adopt(self, record: GroupRecord) -> bool:
        """Resolves the ID of an untracked record through its name, so an existing group is taken over."""
        path = identity_group_name_path(record.name)
        try:
            response = self._svc.read_vault_path(path)
        except VaultError as e:
            raise RemoteReadError(operation='adopt', key=record.name, cause=e) from e

        data = response['data'] if response and 'data' in response else None
        if not data or not data.get('id'):
            return False
        record.id = data['id']
        self._logger.info(f"Adopting existing identity group '{record.name}' ({record.id})")
        return True


class VaultIdentityGroup(VaultResource):

    def __init__(self, data: dict, svc: ExternalServices = None) -> None:
        super().__init__(data=data, svc=svc if svc is not None else ExternalServices())
        string_list = {"type": "array", "items": {"type": "string"}}
        self.config_schema.update({
            "required": ["name"],
            "additionalProperties": False,
            "properties": {
                "name": {
                    "description": "Name of the group. Changing it re-creates the group.",
                    "type": "string",
                    "minLength": 1
                },
                "type": {
                    "description": "Type of the group, internal or external. Changing it re-creates the group.",
                    "type": "string",
                    "enum": [kind.value for kind in GroupKind]
                },
                "metadata": {
                    "description": "Metadata to be associated with the group.",
                    "type": "object",
                    "additionalProperties": {"type": "string"}
                },
                "policies": dict(string_list, description="Policies to be tied to the group."),
                "member_group_ids": dict(string_list, description="Group IDs to be assigned as group members."),
                "member_entity_ids": dict(string_list, description="Entity IDs to be assigned as group members.")
            }
        })

    @property
    def reconciler(self) -> IdentityGroupReconciler:
        return IdentityGroupReconciler(svc=self.svc, logger=self.logger)

    @property
    def desired_group(self) -> GroupRecord:
        return GroupRecord.from_config(self.info.config)

    def tracked_group(self) -> GroupRecord:
        state = self.store.load()
        if state is not None:
            return GroupRecord.from_state(state)
        else:
            desired = self.desired_group
            return GroupRecord(name=desired.name, kind=desired.kind)

    def track(self, group: GroupRecord) -> None:
        if group.id:
            self.store.save(group.to_state())
        else:
            self.store.forget()

    def discover_state(self):
        group = self.tracked_group()
        if not self.reconciler.exists(group):
            if group.id:
                self.logger.warn(f"Identity group '{group.id}' no longer exists, removing from state")
            self.store.forget()
            return None

        if not group.id and not self.reconciler.adopt(group):
            return None

        self.reconciler.read(group)
        self.track(group)
        return group.to_state() if group.id else None

    def get_actions_for_missing_state(self) -> Sequence[DAction]:
        return [DAction(name='create', description=f"Create identity group '{self.info.config['name']}'")]

    def get_actions_for_discovered_state(self, state: dict) -> Sequence[DAction]:
        actions: MutableSequence[DAction] = []
        desired = self.desired_group

        if state['name'] != desired.name or state['type'] != desired.kind.value:
            actions.append(DAction(name='recreate',
                                   description=f"Re-create identity group '{desired.name}' "
                                               f"(name and type cannot be changed)"))
            return actions

        # Vault reports unset collections as null
        differences = collect_differences(desired=desired.optional_fields(), actual=state, none_as_empty=True,
                                          strict=True)
        if differences:
            self.logger.debug(f"Found state differences: {', '.join(differences)}")
            actions.append(DAction(name='update', description=f"Update identity group '{desired.name}'"))
        return actions

    @action
    def create(self, args):
        if args: pass
        group = self.desired_group
        group_id = self.reconciler.create(group)
        if not group.id:
            self.logger.warn(f"Identity group '{group.name}' ('{group_id}') vanished right after it was created, "
                             f"it is not tracked")
        self.track(group)

    @action
    def update(self, args):
        if args: pass
        tracked = self.tracked_group()
        if not tracked.id:
            raise UserError(f"identity group '{tracked.name}' is not tracked, cannot update it")
        group = self.desired_group
        group.id = tracked.id
        self.reconciler.update(group)
        self.track(group)

    @action
    def delete(self, args):
        if args: pass
        group = self.tracked_group()
        if group.id:
            self.reconciler.delete(group)
        self.store.forget()

    @action
    def recreate(self, args):
        self.delete(args)
        self.create(args)


def main():
    VaultIdentityGroup(json.loads(sys.stdin.read())).execute()  # pragma: no cover


if __name__ == "__main__":
    main()
