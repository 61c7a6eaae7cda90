import json
import shutil
import subprocess
from pathlib import Path
from typing import Any, Sequence, Union, MutableMapping

import hvac
import requests
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from hvac.exceptions import VaultError

from gke_onboarding.util import UserError


class ExternalServices:
    """Gateway to everything outside this process: kubectl, gcloud, the GKE API and Vault."""

    def __init__(self, timeout: int = 60 * 5) -> None:
        super().__init__()
        self._timeout: int = timeout
        self._services: MutableMapping[str, Any] = {}

    def _get_gcp_service(self, service_name, version) -> Any:
        service_key = service_name + '_' + version
        if service_key not in self._services:
            # act as the gcloud CLI's active account, not the application default credentials
            credentials = Credentials(token=self.get_gcloud_access_token())
            self._services[service_key] = build(serviceName=service_name, version=version, credentials=credentials,
                                                cache_discovery=False)
        return self._services[service_key]

    def _run(self, command: Sequence[str]) -> subprocess.CompletedProcess:
        try:
            process = subprocess.run(command,
                                     stdout=subprocess.PIPE,
                                     stderr=subprocess.PIPE,
                                     encoding='utf-8',
                                     timeout=self._timeout)
        except subprocess.TimeoutExpired as e:
            raise UserError(f"'{' '.join(command)}' timed out after {self._timeout} seconds") from e
        if process.returncode != 0:
            raise UserError(f"'{' '.join(command)}' failed with exit code #{process.returncode}:\n"
                            f"{process.stderr.strip()}")
        return process

    def _run_json(self, command: Sequence[str]) -> Union[None, dict]:
        process = self._run(command)
        if not process.stdout.strip():
            return None
        try:
            return json.loads(process.stdout)
        except json.decoder.JSONDecodeError as e:
            raise UserError(f"'{' '.join(command)}' provided invalid JSON: {e.msg}") from e

    def find_binary(self, name: str) -> Union[None, str]:
        return shutil.which(name)

    def find_k8s_cluster_object(self, kind: str, name: str) -> Union[None, dict]:
        return self._run_json(["kubectl", "get", kind, name, "--ignore-not-found=true", "--output=json"])

    def find_k8s_namespace_object(self, namespace: str, kind: str, name: str) -> Union[None, dict]:
        return self._run_json(
            ["kubectl", "get", "--namespace", namespace, kind, name, "--ignore-not-found=true", "--output=json"])

    def create_k8s_service_account(self, namespace: str, name: str) -> None:
        self._run(["kubectl", "create", "serviceaccount", name, "--namespace", namespace])

    def apply_k8s_manifest_file(self, path: Path) -> None:
        self._run(["kubectl", "apply", f"--filename={path}"])

    def get_kubectl_config(self) -> dict:
        config = self._run_json(["kubectl", "config", "view", "--output=json"])
        return config if config is not None else {}

    def get_gcloud_config_value(self, key: str) -> str:
        process = self._run(["gcloud", "config", "list", "--format", f"value({key})"])
        return process.stdout.strip()

    def get_gcloud_access_token(self) -> str:
        token = self._run(["gcloud", "auth", "print-access-token"]).stdout.strip()
        if not token:
            raise UserError("gcloud provided no access token (use 'gcloud auth login')")
        return token

    def find_gke_clusters(self, project_id: str) -> Sequence[dict]:
        try:
            clusters_service = self._get_gcp_service('container', 'v1').projects().locations().clusters()
            result = clusters_service.list(parent=f"projects/{project_id}/locations/-").execute()
        except (HttpError, GoogleAuthError) as e:
            raise UserError(f"could not list GKE clusters of project '{project_id}': {e}") from e
        return result['clusters'] if 'clusters' in result else []

    def write_vault_secret(self, url: str, token: str, mount_point: str, path: str, secret: dict,
                           kv_version: int = 2) -> None:
        client = hvac.Client(url=url, token=token)
        try:
            if kv_version == 1:
                client.secrets.kv.v1.create_or_update_secret(path=path, secret=secret, mount_point=mount_point)
            else:
                client.secrets.kv.v2.create_or_update_secret(path=path, secret=secret, mount_point=mount_point)
        except (VaultError, requests.exceptions.RequestException) as e:
            raise UserError(f"Vault rejected write to '{mount_point}/{path}': {e}") from e
