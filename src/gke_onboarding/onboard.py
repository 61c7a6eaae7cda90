#!/usr/bin/env python3

import os
import sys
import traceback
from pathlib import Path
from typing import Sequence

import yaml
from colors import bold, underline, green, italic, faint

from gke_onboarding.args import parse_arguments
from gke_onboarding.context import Context
from gke_onboarding.credentials import CredentialBundle, ClusterIdentity, extract_credentials, resolve_endpoint, \
    resolve_identity
from gke_onboarding.external_services import ExternalServices
from gke_onboarding.rbac import apply_binding, binding_kind
from gke_onboarding.util import UserError, Logger
from gke_onboarding.vault import upload_bundle

REQUIRED_BINARIES: Sequence[str] = ['kubectl', 'gcloud']


class Onboarding:
    """Creates the service account, binds it to cluster-admin and hands its credentials over to Vault.

    Every step runs once, in order, and any failure aborts the run. Resources created before a failure are left in
    place. The service account is created on every run without checking for an existing one first."""

    def __init__(self, context: Context, svc: ExternalServices) -> None:
        super().__init__()
        self._context: Context = context
        self._svc: ExternalServices = svc

    @property
    def context(self) -> Context:
        return self._context

    def verify_environment(self) -> None:
        with Logger(f":hourglass: {underline('Verifying environment:')}") as logger:
            for binary in REQUIRED_BINARIES:
                if self._svc.find_binary(binary) is None:
                    raise UserError(f"Binary '{binary}' is missing but required")
                logger.info(f":wrench: Found '{binary}'")

            if not self.context.kubeconfig_present:
                raise UserError(f"Error: no ~/.kube/config file is present or $KUBECONFIG is not set. cannot continue\n"
                                f"You can run the 'gcloud container clusters get-credentials' command to retrieve the "
                                f"gke credentials")
            logger.info(f":wrench: Found kubectl configuration")

            if not self.context.vault_addr:
                raise UserError(f"Vault address is not configured (set $VAULT_ADDR or the '_vault_addr' variable)")
            logger.info(f":wrench: Using Vault at {italic(self.context.vault_addr)}")

    def create_account(self) -> None:
        namespace: str = self.context.namespace
        account_name: str = self.context.account_name
        with Logger(f":busts_in_silhouette: {underline('Creating account:')}") as logger:
            if self._svc.find_k8s_cluster_object(kind='namespace', name=namespace) is None:
                raise UserError(f"namespace \"{namespace}\" does not exist")

            logger.info(f":heavy_plus_sign: Creating service account '{account_name}' in namespace \"{namespace}\"...")
            try:
                self._svc.create_k8s_service_account(namespace=namespace, name=account_name)
            except UserError as e:
                # an existing account is reused as-is
                logger.warn(e.message)

    def run(self) -> CredentialBundle:
        self.verify_environment()
        self.create_account()

        namespace: str = self.context.namespace
        account_name: str = self.context.account_name
        with Logger(f":key: {underline('Collecting credentials:')}") as logger:
            ca_cert, user_token = extract_credentials(svc=self._svc, namespace=namespace, account_name=account_name)
            logger.info(f":white_check_mark: Extracted CA certificate and token of '{account_name}'")

            cluster_name, endpoint = resolve_endpoint(self._svc.get_kubectl_config())
            logger.info(f":white_check_mark: Current cluster is '{cluster_name}' at {italic(endpoint)}")

        with Logger(f":lock: {underline(binding_kind(namespace) + ':')}"):
            apply_binding(svc=self._svc, work_dir=self.context.workspace_dir, namespace=namespace,
                          account_name=account_name)

        with Logger(f":cloud: {underline('Resolving cluster identity:')}") as logger:
            identity: ClusterIdentity = resolve_identity(svc=self._svc, endpoint=endpoint, namespace=namespace)
            logger.info(f":point_right: Project..: {bold(identity.project)}")
            logger.info(f":point_right: Account..: {bold(self._svc.get_gcloud_config_value('core.account'))}")
            logger.info(f":point_right: Location.: {bold(identity.location)}")
            logger.info(f":point_right: Cluster..: {bold(identity.cluster)}")
            logger.info(f":point_right: ID.......: {bold(identity.cluster_id)}")

        bundle: CredentialBundle = CredentialBundle(ca_cert=ca_cert,
                                                    user_token=user_token,
                                                    k8s_host=endpoint,
                                                    k8s_name=identity.cluster_id,
                                                    k8s_username=account_name)
        with Logger(f":outbox_tray: {underline('Uploading to Vault:')}"):
            upload_bundle(svc=self._svc, context=self.context, bundle=bundle)

        if self.context.kubeconfig_out is not None:
            self.write_kubeconfig(bundle)
        return bundle

    def write_kubeconfig(self, bundle: CredentialBundle) -> Path:
        path: Path = Path(self.context.kubeconfig_out) if self.context.kubeconfig_out \
            else self.context.workspace_dir / f"{bundle.k8s_name}.config"
        with Logger(f":page_facing_up: {underline('Kubeconfig:')}") as logger:
            os.makedirs(str(path.parent), exist_ok=True)
            with open(path, 'w') as f:
                f.write(yaml.dump(bundle.to_kubeconfig(), default_flow_style=False))
            os.chmod(str(path), 0o600)
            logger.info(f":floppy_disk: Wrote kubeconfig for '{bundle.k8s_username}' to {italic(faint(str(path)))}")
        return path


def main(args: Sequence[str] = None, context: Context = None, svc: ExternalServices = None) -> None:
    context: Context = context if context is not None else Context()
    print('')
    with Logger(green(underline(bold(f":heavy_check_mark: GKE onboarding v{context.version}")))) as logger:
        logger.info(f"This will create a new '{context.account_name}' service account on the GKE cluster with admin")
        logger.info(f"permissions and upload the credentials to Vault for use by Spinnaker dynamic accounts")

    try:
        context.load_auto_files()
        parse_arguments(context, args)
        context.validate()
        if context.verbose:
            context.display()

        with Logger(indent_amount=0, spacious=False) as logger:
            logger.info(f"Using the namespace \"{context.namespace}\"")

        svc = svc if svc is not None else ExternalServices(timeout=context.timeout)
        Onboarding(context=context, svc=svc).run()

    except UserError as e:
        with Logger(indent_amount=0, spacious=False) as logger:
            if context and context.verbose:
                logger.error(traceback.format_exc().strip())
            else:
                logger.error(e.message)
        sys.exit(1)

    except KeyboardInterrupt:
        with Logger(indent_amount=0, spacious=False) as logger:
            logger.error(f"Interrupted.")
        sys.exit(1)

    except Exception:
        # unexpected, so always print the stacktrace
        with Logger(indent_amount=0, spacious=False) as logger:
            logger.error(traceback.format_exc().strip())
        sys.exit(1)


if __name__ == "__main__":
    main()
