import base64
from copy import deepcopy

import pytest

from gke_onboarding.credentials import CredentialBundle, ClusterIdentity, extract_credentials, \
    find_token_secret_name, resolve_endpoint, resolve_identity, endpoint_address
from gke_onboarding.util import UserError
from scenario_util import CA_CERT, TOKEN, ENDPOINT_IP, b64, cluster_objects, kube_config, mock_services


@pytest.mark.parametrize("project,location,cluster,namespace,expected", [
    ('my-project', 'us-central1-a', 'prod', 'default', 'gke_my-project_us-central1-a_prod_default'),
    ('p', 'europe-west1', 'c', 'spinnaker', 'gke_p_europe-west1_c_spinnaker'),
])
def test_cluster_id(project: str, location: str, cluster: str, namespace: str, expected: str):
    identity = ClusterIdentity(project=project, location=location, cluster=cluster, namespace=namespace)
    assert identity.cluster_id == expected


@pytest.mark.parametrize("namespace", ['default', 'spinnaker'])
def test_extract_credentials(namespace: str):
    svc = mock_services(namespace=namespace)
    ca_cert, token = extract_credentials(svc=svc, namespace=namespace, account_name='spinnaker-user')
    assert ca_cert == CA_CERT
    assert token == TOKEN


def test_first_secret_is_used():
    account: dict = {'metadata': {'name': 'spinnaker-user'},
                     'secrets': [{'name': 'first-token'}, {'name': 'second-token'}]}
    svc = mock_services(k8s_objects=cluster_objects(account=account))
    assert find_token_secret_name(svc=svc, namespace='default', account_name='spinnaker-user') == 'first-token'


@pytest.mark.parametrize("account,match", [
    ({'metadata': {'name': 'spinnaker-user'}}, r"has no token secret"),
    ({'metadata': {'name': 'spinnaker-user'}, 'secrets': []}, r"has no token secret"),
    ({'metadata': {'name': 'spinnaker-user'}, 'secrets': None}, r"has no token secret"),
])
def test_missing_token_secret(account: dict, match: str):
    svc = mock_services(k8s_objects=cluster_objects(account=account))
    with pytest.raises(UserError, match=match):
        extract_credentials(svc=svc, namespace='default', account_name='spinnaker-user')


def test_missing_service_account():
    svc = mock_services(k8s_objects={})
    with pytest.raises(UserError, match=r"service account 'spinnaker-user' was not found"):
        extract_credentials(svc=svc, namespace='default', account_name='spinnaker-user')


def test_missing_secret_object():
    objects: dict = cluster_objects()
    del objects['default-secret-spinnaker-user-token-x7k2p']
    with pytest.raises(UserError, match=r"secret 'spinnaker-user-token-x7k2p' was not found"):
        extract_credentials(svc=mock_services(k8s_objects=objects), namespace='default', account_name='spinnaker-user')


@pytest.mark.parametrize("data,match", [
    ({'token': b64(TOKEN)}, r"no 'ca.crt' entry"),
    ({'ca.crt': b64(CA_CERT)}, r"no 'token' entry"),
    ({'ca.crt': b64(CA_CERT), 'token': '***not-base64***'}, r"'token' is not valid base64"),
    ({'ca.crt': base64.b64encode(b'\xff\xfe').decode('ascii'), 'token': b64(TOKEN)}, r"'ca.crt' is not valid"),
])
def test_invalid_secret_data(data: dict, match: str):
    secret: dict = {'metadata': {'name': 'spinnaker-user-token-x7k2p'}, 'data': data}
    svc = mock_services(k8s_objects=cluster_objects(secret=secret))
    with pytest.raises(UserError, match=match):
        extract_credentials(svc=svc, namespace='default', account_name='spinnaker-user')


def test_resolve_endpoint():
    assert resolve_endpoint(kube_config()) == ('gke_my-project_us-central1-a_prod', f"https://{ENDPOINT_IP}")


@pytest.mark.parametrize("change,match", [
    (lambda c: c.pop('current-context'), r"no current context"),
    (lambda c: c.update({'current-context': ''}), r"no current context"),
    (lambda c: c.update({'current-context': 'missing'}), r"context 'missing' was not found"),
    (lambda c: c.pop('contexts'), r"was not found"),
    (lambda c: c.update({'clusters': []}), r"has no server"),
    (lambda c: c['clusters'][1]['cluster'].pop('server'), r"has no server"),
])
def test_resolve_endpoint_invalid(change, match: str):
    config: dict = deepcopy(kube_config())
    change(config)
    with pytest.raises(UserError, match=match):
        resolve_endpoint(config)


@pytest.mark.parametrize("endpoint,expected", [
    ("https://35.200.10.20", "35.200.10.20"),
    ("35.200.10.20", "35.200.10.20"),
    ("http://35.200.10.20", "35.200.10.20"),
    ("https://35.200.10.20:443", "35.200.10.20"),
    ("https://35.200.10.20/", "35.200.10.20"),
    ("https://35.200.10.20:443/", "35.200.10.20"),
    ("35.200.10.20:443", "35.200.10.20"),
])
def test_endpoint_address(endpoint: str, expected: str):
    assert endpoint_address(endpoint) == expected


def test_resolve_identity():
    identity: ClusterIdentity = resolve_identity(svc=mock_services(), endpoint=f"https://{ENDPOINT_IP}",
                                                 namespace='spinnaker')
    assert identity.project == 'my-project'
    assert identity.location == 'us-central1-a'
    assert identity.cluster == 'prod'
    assert identity.cluster_id == 'gke_my-project_us-central1-a_prod_spinnaker'


def test_resolve_identity_with_port_and_slash():
    identity: ClusterIdentity = resolve_identity(svc=mock_services(), endpoint=f"https://{ENDPOINT_IP}:443/",
                                                 namespace='default')
    assert identity.cluster == 'prod'


def test_resolve_identity_without_project():
    with pytest.raises(UserError, match=r"no gcloud project is configured"):
        resolve_identity(svc=mock_services(gcloud_config={}), endpoint=f"https://{ENDPOINT_IP}", namespace='default')


def test_resolve_identity_unknown_endpoint():
    with pytest.raises(UserError, match=r"no GKE cluster with endpoint '10.9.9.9'"):
        resolve_identity(svc=mock_services(), endpoint="https://10.9.9.9", namespace='default')


def test_bundle_to_dict():
    bundle = CredentialBundle(ca_cert=CA_CERT, user_token=TOKEN, k8s_host='https://1.2.3.4', k8s_name='gke_p_l_c_n',
                              k8s_username='spinnaker-user')
    assert bundle.to_dict() == {
        'ca_cert': CA_CERT,
        'k8s_host': 'https://1.2.3.4',
        'k8s_name': 'gke_p_l_c_n',
        'k8s_username': 'spinnaker-user',
        'user_token': TOKEN
    }
    bundle.validate()


def test_bundle_validation():
    bundle = CredentialBundle(ca_cert=CA_CERT, user_token='', k8s_host='https://1.2.3.4', k8s_name='gke_p_l_c_n',
                              k8s_username='spinnaker-user')
    with pytest.raises(UserError, match=r"incomplete credentials"):
        bundle.validate()


def test_bundle_kubeconfig():
    bundle = CredentialBundle(ca_cert=CA_CERT, user_token=TOKEN, k8s_host='https://1.2.3.4', k8s_name='gke_p_l_c_n',
                              k8s_username='spinnaker-user')
    config: dict = bundle.to_kubeconfig()
    assert config['current-context'] == 'gke_p_l_c_n'
    assert config['clusters'][0]['cluster']['server'] == 'https://1.2.3.4'
    assert base64.b64decode(config['clusters'][0]['cluster']['certificate-authority-data']).decode() == CA_CERT
    assert config['users'][0] == {'name': 'spinnaker-user', 'user': {'token': TOKEN}}
    assert config['contexts'][0]['context'] == {'cluster': 'gke_p_l_c_n', 'user': 'spinnaker-user'}
