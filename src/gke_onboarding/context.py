import os
import re
from pathlib import Path
from typing import Any, Mapping

import jsonschema
import yaml
from colors import bold, underline, italic

from gke_onboarding import util
from gke_onboarding.util import UserError, merge_into, Logger

DEFAULT_NAMESPACE = 'default'
DEFAULT_ACCOUNT_NAME = 'spinnaker-user'
DEFAULT_VERSION_FILE = Path(__file__).parent / 'VERSION'

# variables that must always hold a value of the given shape (user variables are free-form)
CONTEXT_SCHEMA: dict = {
    "type": "object",
    "required": ["_namespace", "_account_name", "_vault_mount", "_vault_intake_path", "_vault_kv_version", "_timeout"],
    "additionalProperties": True,
    "properties": {
        "_namespace": {"type": "string", "minLength": 1},
        "_account_name": {"type": "string", "minLength": 1},
        "_vault_addr": {"type": ["string", "null"]},
        "_vault_mount": {"type": "string", "minLength": 1},
        "_vault_intake_path": {"type": "string", "minLength": 1},
        "_vault_kv_version": {"type": "integer", "enum": [1, 2]},
        "_timeout": {"type": "integer", "minimum": 1},
        "_kubeconfig_out": {"type": ["string", "null"]}
    }
}


class Context:

    def __init__(self, version_file_path: str = str(DEFAULT_VERSION_FILE), env: Mapping[str, str] = os.environ) -> None:
        self._data = {}
        self._env: Mapping[str, str] = env

        if os.path.exists(version_file_path):
            with open(version_file_path, 'r') as f:
                self.add_variable('_version', f.read().strip())
        else:
            self.add_variable('_version', "0.0.0")

        self.add_variable('_verbose',
                          True if "VERBOSE" in env and env["VERBOSE"].lower() in ['1', 'yes', 'true'] else False)

        # work paths
        self.add_variable('_conf', env["CONF_DIR"] if 'CONF_DIR' in env else os.path.expanduser('~/.gke-onboarding'))
        self.add_variable('_workspace', env["WORKSPACE_DIR"] if 'WORKSPACE_DIR' in env else os.path.abspath('.'))

        # onboarding defaults
        self.add_variable('_namespace', DEFAULT_NAMESPACE)
        self.add_variable('_account_name', DEFAULT_ACCOUNT_NAME)
        self.add_variable('_vault_addr', env.get('VAULT_ADDR'))
        self.add_variable('_vault_mount', 'secret')
        self.add_variable('_vault_intake_path', 'dynamic_accounts/intake')
        self.add_variable('_vault_kv_version', 2)
        self.add_variable('_timeout', 60 * 5)
        self.add_variable('_kubeconfig_out', None)

    def load_auto_files(self) -> None:
        for directory in [self.conf_dir, self.workspace_dir]:
            if directory.is_dir():
                for file in sorted(os.listdir(str(directory))):
                    if re.match(r'^vars\.(.*\.)?auto\.yaml$', file):
                        self.add_file(str(directory / file))

    @property
    def version(self) -> str:
        return self._data['_version']

    @property
    def verbose(self) -> bool:
        return self._data['_verbose']

    @verbose.setter
    def verbose(self, value: bool):
        self.add_variable('_verbose', value)

    @property
    def conf_dir(self) -> Path:
        return Path(self._data['_conf'])

    @property
    def workspace_dir(self) -> Path:
        return Path(self._data['_workspace'])

    @property
    def namespace(self) -> str:
        return self._data['_namespace']

    @namespace.setter
    def namespace(self, value: str):
        self.add_variable('_namespace', value)

    @property
    def account_name(self) -> str:
        return self._data['_account_name']

    @property
    def vault_addr(self) -> str:
        return self._data['_vault_addr']

    @property
    def vault_token(self) -> str:
        if self._env.get('VAULT_TOKEN'):
            return self._env['VAULT_TOKEN']

        # same fallback the vault CLI uses after 'vault login'
        token_file = Path(self._env.get('HOME', os.path.expanduser('~'))) / '.vault-token'
        if token_file.is_file():
            with open(token_file, 'r') as f:
                return f.read().strip()
        return None

    @property
    def vault_mount(self) -> str:
        return self._data['_vault_mount']

    @property
    def vault_intake_path(self) -> str:
        return self._data['_vault_intake_path'].strip('/')

    @property
    def vault_kv_version(self) -> int:
        return self._data['_vault_kv_version']

    @property
    def timeout(self) -> int:
        return self._data['_timeout']

    @property
    def kubeconfig_out(self) -> str:
        return self._data['_kubeconfig_out']

    @kubeconfig_out.setter
    def kubeconfig_out(self, value: str):
        self.add_variable('_kubeconfig_out', value)

    @property
    def kubeconfig_present(self) -> bool:
        if self._env.get('KUBECONFIG'):
            return True
        return (Path(self._env.get('HOME', os.path.expanduser('~'))) / '.kube' / 'config').is_file()

    def add_file(self, path: str) -> None:
        with open(path, 'r') as stream:
            try:
                source = yaml.safe_load(stream.read())
            except yaml.YAMLError as e:
                raise UserError(f"illegal config: malformed variables file at '{path}': {e}") from e
        if source is None:
            return
        if not isinstance(source, dict):
            raise UserError(f"illegal config: variables file at '{path}' must contain a mapping")
        merge_into(self._data, util.post_process(value=source, context=self.data))

    def add_variable(self, key: str, value: Any) -> None:
        self._data[key] = value

    def validate(self) -> None:
        try:
            jsonschema.validate(self._data, CONTEXT_SCHEMA)
        except jsonschema.ValidationError as e:
            path = '.'.join(str(p) for p in e.absolute_path)
            raise UserError(f"illegal config: {path}: {e.message}") from e

    @property
    def data(self) -> dict:
        return self._data

    def display(self) -> None:
        with Logger(header=f":clipboard: {underline('Context:')}") as logger:
            largest_name_length: int = len(max(list(self.data.keys()), key=lambda key: len(key)))
            for name in sorted(self.data.keys()):
                msg: str = f":point_right: {name.ljust(largest_name_length, '.')}..: {bold(str(self.data[name]))}"
                if name.startswith("_"):
                    msg = italic(msg)
                logger.info(msg)
