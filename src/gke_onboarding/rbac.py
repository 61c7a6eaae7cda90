import os
from pathlib import Path

from gke_onboarding.external_services import ExternalServices
from gke_onboarding.util import UserError, Logger, render_template

ADMIN_CLUSTER_ROLE = 'cluster-admin'

# cluster-admin in a ClusterRoleBinding grants full control over every namespace; in a RoleBinding it grants full
# control over the binding's namespace only (including the namespace itself).
BINDING_TEMPLATE = """\
apiVersion: rbac.authorization.k8s.io/v1
kind: {{ kind }}
metadata:
  name: {{ account_name }}
  namespace: {{ namespace }}
roleRef:
  apiGroup: rbac.authorization.k8s.io
  kind: ClusterRole
  name: {{ role }}
subjects:
  - kind: ServiceAccount
    name: {{ account_name }}
    namespace: {{ namespace }}
"""


def binding_kind(namespace: str) -> str:
    return 'ClusterRoleBinding' if namespace == 'default' else 'RoleBinding'


def render_binding_manifest(namespace: str, account_name: str) -> str:
    return render_template(BINDING_TEMPLATE, {
        'kind': binding_kind(namespace),
        'namespace': namespace,
        'account_name': account_name,
        'role': ADMIN_CLUSTER_ROLE
    })


def apply_binding(svc: ExternalServices, work_dir: Path, namespace: str, account_name: str) -> None:
    """Writes the binding manifest into the work directory, applies it and removes the file again.

    The file is removed whether or not the apply succeeded."""
    kind: str = binding_kind(namespace)
    manifest_path: Path = work_dir / f"rbac-config-{account_name}.yaml"
    os.makedirs(str(work_dir), exist_ok=True)
    with open(manifest_path, 'w') as f:
        f.write(render_binding_manifest(namespace=namespace, account_name=account_name))

    with Logger(spacious=False) as logger:
        logger.info(f":lock: Binding '{ADMIN_CLUSTER_ROLE}' to '{account_name}' using a {kind}...")
        try:
            svc.apply_k8s_manifest_file(manifest_path)
        except UserError as e:
            raise UserError(f"There was an error applying the {kind}\n{e.message}") from e
        finally:
            os.remove(str(manifest_path))
