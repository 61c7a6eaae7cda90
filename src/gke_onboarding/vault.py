from gke_onboarding.context import Context
from gke_onboarding.credentials import CredentialBundle
from gke_onboarding.external_services import ExternalServices
from gke_onboarding.util import UserError, Logger


def intake_path(context: Context, cluster_id: str) -> str:
    return f"{context.vault_intake_path}/{cluster_id}"


def upload_bundle(svc: ExternalServices, context: Context, bundle: CredentialBundle) -> str:
    """Writes the bundle to the Vault intake location of its cluster and returns the full secret path."""
    bundle.validate()
    path: str = intake_path(context, bundle.k8s_name)
    with Logger(spacious=False) as logger:
        logger.info(f":outbox_tray: Writing credentials to '{context.vault_mount}/{path}'...")
        try:
            svc.write_vault_secret(url=context.vault_addr,
                                   token=context.vault_token,
                                   mount_point=context.vault_mount,
                                   path=path,
                                   secret=bundle.to_dict(),
                                   kv_version=context.vault_kv_version)
        except UserError as e:
            raise UserError(f"Unable to upload details to Vault intake location\n{e.message}") from e
        logger.info(f"Uploaded details to Vault intake location")
    return f"{context.vault_mount}/{path}"
