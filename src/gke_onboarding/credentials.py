import base64
import binascii
from typing import Tuple
from urllib.parse import urlsplit

import jsonschema

from gke_onboarding.external_services import ExternalServices
from gke_onboarding.util import UserError


class CredentialBundle:
    """Credentials of the onboarded service account, in the shape Spinnaker dynamic accounts read from Vault."""

    schema: dict = {
        "type": "object",
        "required": ["ca_cert", "k8s_host", "k8s_name", "k8s_username", "user_token"],
        "additionalProperties": False,
        "properties": {
            "ca_cert": {"type": "string", "minLength": 1},
            "k8s_host": {"type": "string", "minLength": 1},
            "k8s_name": {"type": "string", "minLength": 1},
            "k8s_username": {"type": "string", "minLength": 1},
            "user_token": {"type": "string", "minLength": 1}
        }
    }

    def __init__(self, ca_cert: str, user_token: str, k8s_host: str, k8s_name: str, k8s_username: str) -> None:
        super().__init__()
        self._ca_cert: str = ca_cert
        self._user_token: str = user_token
        self._k8s_host: str = k8s_host
        self._k8s_name: str = k8s_name
        self._k8s_username: str = k8s_username

    @property
    def ca_cert(self) -> str:
        """PEM-encoded CA certificate of the cluster API server."""
        return self._ca_cert

    @property
    def user_token(self) -> str:
        """Bearer token of the service account."""
        return self._user_token

    @property
    def k8s_host(self) -> str:
        """API server URL, as found in the local kubeconfig."""
        return self._k8s_host

    @property
    def k8s_name(self) -> str:
        """The cluster identifier, also used as the Vault key."""
        return self._k8s_name

    @property
    def k8s_username(self) -> str:
        return self._k8s_username

    def to_dict(self) -> dict:
        return {
            'ca_cert': self.ca_cert,
            'k8s_host': self.k8s_host,
            'k8s_name': self.k8s_name,
            'k8s_username': self.k8s_username,
            'user_token': self.user_token
        }

    def validate(self) -> None:
        try:
            jsonschema.validate(self.to_dict(), CredentialBundle.schema)
        except jsonschema.ValidationError as e:
            raise UserError(f"incomplete credentials: {e.message}") from e

    def to_kubeconfig(self) -> dict:
        """Builds a kubeconfig authenticating as the service account."""
        name: str = self.k8s_name
        return {
            'apiVersion': 'v1',
            'kind': 'Config',
            'preferences': {},
            'clusters': [
                {
                    'name': name,
                    'cluster': {
                        'certificate-authority-data': base64.b64encode(self.ca_cert.encode('utf-8')).decode('ascii'),
                        'server': self.k8s_host
                    }
                }
            ],
            'users': [
                {
                    'name': self.k8s_username,
                    'user': {
                        'token': self.user_token
                    }
                }
            ],
            'contexts': [
                {
                    'name': name,
                    'context': {
                        'cluster': name,
                        'user': self.k8s_username
                    }
                }
            ],
            'current-context': name
        }


class ClusterIdentity:

    def __init__(self, project: str, location: str, cluster: str, namespace: str) -> None:
        super().__init__()
        self._project: str = project
        self._location: str = location
        self._cluster: str = cluster
        self._namespace: str = namespace

    @property
    def project(self) -> str:
        return self._project

    @property
    def location(self) -> str:
        return self._location

    @property
    def cluster(self) -> str:
        return self._cluster

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def cluster_id(self) -> str:
        return f"gke_{self.project}_{self.location}_{self.cluster}_{self.namespace}"


def _decode(value: str, field: str) -> str:
    try:
        return base64.b64decode(value, validate=True).decode('utf-8')
    except (binascii.Error, UnicodeDecodeError) as e:
        raise UserError(f"secret field '{field}' is not valid base64-encoded text: {e}") from e


def find_token_secret_name(svc: ExternalServices, namespace: str, account_name: str) -> str:
    account = svc.find_k8s_namespace_object(namespace=namespace, kind='serviceaccount', name=account_name)
    if account is None:
        raise UserError(f"service account '{account_name}' was not found in namespace \"{namespace}\"")

    secrets = account['secrets'] if 'secrets' in account and account['secrets'] else []
    names = [secret['name'] for secret in secrets if 'name' in secret]
    if not names:
        # Kubernetes 1.24+ no longer creates token secrets for service accounts automatically
        raise UserError(f"service account '{account_name}' has no token secret bound to it")
    return names[0]


def extract_credentials(svc: ExternalServices, namespace: str, account_name: str) -> Tuple[str, str]:
    """Returns the decoded CA certificate and bearer token of the given service account."""
    secret_name: str = find_token_secret_name(svc=svc, namespace=namespace, account_name=account_name)
    secret = svc.find_k8s_namespace_object(namespace=namespace, kind='secret', name=secret_name)
    if secret is None:
        raise UserError(f"secret '{secret_name}' was not found in namespace \"{namespace}\"")

    data: dict = secret['data'] if 'data' in secret and secret['data'] else {}
    for field in ['ca.crt', 'token']:
        if field not in data or not data[field]:
            raise UserError(f"secret '{secret_name}' has no '{field}' entry")
    return _decode(data['ca.crt'], 'ca.crt'), _decode(data['token'], 'token')


def resolve_endpoint(kube_config: dict) -> Tuple[str, str]:
    """Returns the cluster name and API server URL of the kubeconfig's current context."""
    current_context: str = kube_config['current-context'] if 'current-context' in kube_config else None
    if not current_context:
        raise UserError(f"no current context is set in the kubectl configuration")

    contexts = [c for c in kube_config.get('contexts') or [] if c.get('name') == current_context]
    if not contexts or 'cluster' not in (contexts[0].get('context') or {}):
        raise UserError(f"context '{current_context}' was not found in the kubectl configuration")
    cluster_name: str = contexts[0]['context']['cluster']

    clusters = [c for c in kube_config.get('clusters') or [] if c.get('name') == cluster_name]
    if not clusters or not (clusters[0].get('cluster') or {}).get('server'):
        raise UserError(f"cluster '{cluster_name}' has no server in the kubectl configuration")
    return cluster_name, clusters[0]['cluster']['server']


def endpoint_address(endpoint: str) -> str:
    """Reduces a kubeconfig server URL to the bare host that GKE reports as the cluster endpoint."""
    parts = urlsplit(endpoint if '://' in endpoint else f"//{endpoint}")
    return parts.hostname if parts.hostname else endpoint


def resolve_identity(svc: ExternalServices, endpoint: str, namespace: str) -> ClusterIdentity:
    project: str = svc.get_gcloud_config_value('core.project')
    if not project:
        raise UserError(f"no gcloud project is configured (use 'gcloud config set project <ID>')")

    address: str = endpoint_address(endpoint)
    matches = [cluster for cluster in svc.find_gke_clusters(project) if cluster.get('endpoint') == address]
    if not matches:
        raise UserError(f"no GKE cluster with endpoint '{address}' was found in project '{project}'")
    cluster: dict = matches[0]
    return ClusterIdentity(project=project, location=cluster['location'], cluster=cluster['name'], namespace=namespace)
