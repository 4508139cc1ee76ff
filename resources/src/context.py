import os
from pathlib import Path
from typing import Any, Mapping, Union

import yaml

from util import UserError, merge_into

DEFAULT_CONFIG_FILE = '/deployster/vault.yaml'
DEFAULT_STATE_DIR = '/deployster/vault-state'
DEFAULT_CLIENT_TIMEOUT = 60


def _is_true(value: Any) -> bool:
    return str(value).lower() in ['1', 'yes', 'true']


class VaultContext:
    """Configuration for talking to Vault, collected from the environment and from YAML variable files.

    Variables from files are merged over the environment, so a file mounted through the 'vault-config' plug can
    override what the container was started with."""

    def __init__(self, env: Mapping[str, str] = os.environ, config_file_path: str = DEFAULT_CONFIG_FILE) -> None:
        self._data = {}

        self.add_variable('address', env["VAULT_ADDR"] if 'VAULT_ADDR' in env else None)
        self.add_variable('token', env["VAULT_TOKEN"] if 'VAULT_TOKEN' in env else None)
        self.add_variable('namespace', env["VAULT_NAMESPACE"] if 'VAULT_NAMESPACE' in env else None)
        self.add_variable('ca_cert', env["VAULT_CACERT"] if 'VAULT_CACERT' in env else None)
        self.add_variable('skip_verify', _is_true(env["VAULT_SKIP_VERIFY"]) if 'VAULT_SKIP_VERIFY' in env else False)
        self.add_variable('timeout',
                          env["VAULT_CLIENT_TIMEOUT"] if 'VAULT_CLIENT_TIMEOUT' in env else DEFAULT_CLIENT_TIMEOUT)
        self.add_variable('state_dir', env["VAULT_STATE_DIR"] if 'VAULT_STATE_DIR' in env else DEFAULT_STATE_DIR)
        self.add_variable('verbose', _is_true(env["VERBOSE"]) if 'VERBOSE' in env else False)

        if config_file_path and os.path.exists(config_file_path):
            self.add_file(config_file_path)

    @property
    def address(self) -> str:
        address: str = self._data['address']
        if not address:
            raise UserError(f"illegal config: Vault address is missing (set VAULT_ADDR)")
        return address.rstrip('/')

    @property
    def token(self) -> Union[None, str]:
        return self._data['token']

    @property
    def namespace(self) -> Union[None, str]:
        return self._data['namespace']

    @property
    def verify(self) -> Union[bool, str]:
        """TLS verification setting, in the form the HTTP session expects: False, True, or a CA bundle path."""
        if self._data['skip_verify']:
            return False
        return self._data['ca_cert'] if self._data['ca_cert'] else True

    @property
    def timeout(self) -> float:
        try:
            return float(self._data['timeout'])
        except (TypeError, ValueError) as e:
            raise UserError(f"illegal config: bad Vault client timeout '{self._data['timeout']}'") from e

    @property
    def state_dir(self) -> Path:
        return Path(self._data['state_dir'])

    @property
    def verbose(self) -> bool:
        return self._data['verbose']

    @verbose.setter
    def verbose(self, value: bool):
        self.add_variable('verbose', value)

    def add_file(self, path: str) -> None:
        with open(path, 'r') as stream:
            try:
                source = yaml.safe_load(stream.read())
            except yaml.YAMLError as e:
                raise UserError(f"illegal config: malformed variables file at '{path}': {e}") from e
        if source is None:
            return
        elif not isinstance(source, dict):
            raise UserError(f"illegal config: variables file at '{path}' must contain a mapping")
        merge_into(self._data, source)

    def add_variable(self, key: str, value: Any) -> None:
        self._data[key] = value

    @property
    def data(self) -> dict:
        return self._data
