import argparse
import json
import sys
from abc import ABC, abstractmethod
from typing import Mapping, Sequence, Any, Callable, MutableMapping

import jsonschema

from external_services import ExternalServices
from util import Logger, UserError

# JSON schemas of what the "init" & "state" actions print back to Deployster
INIT_ACTION_RESULT_SCHEMA = {
    "type": "object",
    "required": ["state_action"],
    "additionalProperties": False,
    "properties": {
        "plugs": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "required": ["container_path", "optional", "writable"],
                "additionalProperties": False,
                "properties": {
                    "container_path": {"type": "string"},
                    "optional": {"type": "boolean"},
                    "writable": {"type": "boolean"}
                }
            }
        },
        "config_schema": {"type": "object"},
        "state_action": {
            "type": "object",
            "properties": {
                "image": {"type": "string"},
                "entrypoint": {"type": "string"},
                "args": {"type": "array", "items": {"type": "string"}}
            }
        }
    }
}

STATE_ACTION_RESULT_SCHEMA = {
    "type": "object",
    "required": ["status"],
    "additionalProperties": False,
    "properties": {
        "status": {"type": "string", "enum": ["STALE", "VALID"]},
        "state": {"type": "object"},
        "staleState": {"type": "object"},
        "actions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "name": {"type": "string"},
                    "description": {"type": "string"},
                    "image": {"type": "string"},
                    "entrypoint": {"type": "string"},
                    "args": {"type": "array", "items": {"type": "string"}}
                }
            }
        }
    }
}


def action(fun):
    """Method decorator signaling to Deployster Python wrapper that this method is a resource action."""
    fun.action = True
    return fun


class DAction:
    """
    Deployster action descriptor.

    Resources return a list of actions as part of their response from the 'state' action.
    """

    def __init__(self,
                 name: str = None,
                 description: str = None,
                 image: str = None,
                 entrypoint: str = None,
                 args: Sequence[str] = None) -> None:
        super().__init__()
        self._name: str = name
        self._description: str = description
        self._image: str = image
        self._entrypoint: str = entrypoint
        self._args: Sequence[str] = args if args is not None else [self._name.replace('-', '_')]

    @property
    def name(self) -> str:
        """The action name."""
        return self._name

    @property
    def description(self) -> str:
        """Short description of the action, possibly shown the user."""
        return self._description

    @property
    def image(self) -> str:
        """The Docker image to run to execute this action. If not provided, the resource's own image is used."""
        return self._image

    @property
    def entrypoint(self) -> str:
        """The entrypoint used when executing the action Docker image."""
        return self._entrypoint

    @property
    def args(self) -> Sequence[str]:
        """Arguments to pass to the entrypoint; by default, the action name (which selects the action method)."""
        return self._args

    def to_dict(self) -> dict:
        """Converts the action into a dictionary that can be serialized as JSON back to Deployster."""
        data: dict = {}
        if self.name: data['name'] = self.name
        if self.description: data['description'] = self.description
        if self.image: data['image'] = self.image
        if self.entrypoint: data['entrypoint'] = self.entrypoint
        if self.args: data['args'] = self.args
        return data


class DPlug:
    """
    Describes a plug that a resource requests (or demands).

    A plug is a volume that Deployster mounts into the resource container. Vault resources use plugs for the Vault
    configuration file and for the directory holding their tracked state between runs.
    """

    def __init__(self, container_path: str, optional: bool, writable: bool) -> None:
        super().__init__()
        self._container_path: str = container_path
        self._optional: bool = optional
        self._writable: bool = writable

    @property
    def container_path(self) -> str:
        """The path to mount the plug in the resource container."""
        return self._container_path

    @property
    def optional(self) -> bool:
        """Whether the resource can work without the plug."""
        return self._optional

    @property
    def writable(self) -> bool:
        """Whether the plug must be writable for the resource to function."""
        return self._writable

    def to_dict(self) -> dict:
        return {'container_path': self.container_path, 'optional': self.optional, 'writable': self.writable}


class DResourceInfo:
    """Provides the raw resource information provided by Deployster on stdin:

    - the resource name & verbosity
    - the resource configuration (the *desired* state, as written by the user in the manifest)
    """

    def __init__(self, data: dict) -> None:
        super().__init__()
        self._data = data

    @property
    def name(self) -> str:
        return self._data['name']

    @property
    def verbose(self) -> bool:
        return self._data['verbose']

    @property
    def has_config(self) -> bool:
        return 'config' in self._data and self._data['config'] is not None

    @property
    def config(self) -> Mapping[str, Any]:
        return self._data['config']


class DResource(ABC):
    """
    Deployster resource base class.

    Handles the resource lifecycle plumbing: parsing the command line to select the action, the "init" action,
    the "state" action (delegating to 'discover_state' and the 'get_actions_for_*' methods), and validation of the
    resource configuration against the resource's config schema.
    """

    def __init__(self, data: dict, svc: ExternalServices) -> None:
        super().__init__()
        self._info = DResourceInfo(data)
        self._svc: ExternalServices = svc
        self._plugs: MutableMapping[str, DPlug] = {}
        self._config_schema = {
            "type": "object",
            "additionalProperties": True,
            "properties": {}
        }
        self._logger: Logger = None

    @property
    def svc(self) -> ExternalServices:
        return self._svc

    @property
    def info(self) -> DResourceInfo:
        return self._info

    @property
    def logger(self) -> Logger:
        if self._logger is None:
            self._logger = Logger(verbose=self.info.verbose or self.svc.context.verbose)
        return self._logger

    def add_plug(self, name: str, container_path: str, optional: bool, writable: bool):
        """Signals that this resource requests or demands this plug."""
        self._plugs[name] = DPlug(container_path=container_path, optional=optional, writable=writable)

    @property
    def config_schema(self) -> dict:
        """The JSON schema used to validate the resource configuration. Subclasses update the returned dict."""
        return self._config_schema

    def validate_config(self) -> None:
        if not self.info.has_config:
            raise UserError(f"resource '{self.info.name}' has no configuration")
        try:
            jsonschema.validate(self.info.config, self.config_schema)
        except jsonschema.ValidationError as e:
            path = ".".join([str(p) for p in e.absolute_path])
            raise UserError(f"illegal config for resource '{self.info.name}'"
                            f"{' at ' + path if path else ''}: {e.message}") from e

    @abstractmethod
    def discover_state(self):
        """Discovers the resource's actual state, as currently deployed.

        Returns a dictionary describing the resource, or None if the resource is not found."""
        raise NotImplementedError(f"internal error: 'discover_state' not implemented")  # pragma: no cover

    @abstractmethod
    def get_actions_for_missing_state(self) -> Sequence[DAction]:
        """Provides the list of actions to invoke when the resource is MISSING."""
        raise NotImplementedError(
            f"internal error: 'get_actions_for_missing_state' not implemented")  # pragma: no cover

    @abstractmethod
    def get_actions_for_discovered_state(self, state: dict) -> Sequence[DAction]:
        """Provides the list of actions to invoke when the resource *was* found.

        An empty list signals that the resource is VALID."""
        raise NotImplementedError(
            f"internal error: 'get_actions_for_discovered_state' not implemented")  # pragma: no cover

    # noinspection PyUnusedLocal
    def configure_action_argument_parser(self, action: str, argparser: argparse.ArgumentParser):
        """Called to configure the argument parser for the given action, for actions that take arguments."""
        if action == 'init':
            pass
        elif action == 'state':
            pass

    @action
    def init(self, args) -> None:
        """This is the "init" action, usually set as the default entrypoint of the resource."""
        if args: pass

        plugs: dict = self._plugs
        print(json.dumps({
            "plugs": {plug_name: plug.to_dict() for plug_name, plug in plugs.items()},
            "config_schema": self.config_schema,
            "state_action": {
                "args": ["state"]
            }
        }))

    @action
    def state(self, args) -> None:
        if args: pass
        state: dict = self.discover_state()
        if state is not None:
            actions: Sequence[DAction] = self.get_actions_for_discovered_state(state=state)
            if actions:
                print(json.dumps({
                    'status': 'STALE',
                    'staleState': state,
                    'actions': [action.to_dict() for action in actions]
                }, indent=2))
            else:
                print(json.dumps({
                    'status': 'VALID',
                    'state': state
                }, indent=2))
        else:
            print(json.dumps({
                'status': 'STALE',
                'actions': [action.to_dict() for action in self.get_actions_for_missing_state()]
            }, indent=2))

    def execute_action(self, action_name: str,
                       action_method: Callable[['DResource', argparse.Namespace], None],
                       args: argparse.Namespace):
        if action_name != 'init':
            self.validate_config()
        action_method(self, args)

    def execute(self, args=sys.argv[1:]) -> None:
        argparser: argparse.ArgumentParser = argparse.ArgumentParser(description=f"Resource {self.info.name}")
        subparsers = argparser.add_subparsers()

        inspection_target = type(self)
        for attr_name in dir(inspection_target):
            attr: Any = getattr(inspection_target, attr_name)
            if callable(attr) and hasattr(attr, 'action'):
                parser = subparsers.add_parser(attr.__name__)
                self.configure_action_argument_parser(attr.__name__, parser)
                parser.set_defaults(action_name=attr.__name__, action_method=attr)

        args = argparser.parse_args(args=args)
        self.execute_action(args.action_name, args.action_method, args)
