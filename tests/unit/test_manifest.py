"""Unit tests for YAML manifest loading."""
import pytest

from cckm.core.desired import AclConfig, CustomKeyStoreConfig, KeyConfig, KmsConfig, ReplicaSource
from cckm.core.manifest import load_manifest

MANIFEST = """
resources:
  - type: aws_kms
    name: kms-prod
    account_id: "111122223333"
    aws_connection: aws-conn
    regions: [us-east-1, eu-west-1]
  - type: aws_acl
    kms_id: kms-1
    group: CCKM Users
    actions: [view, keycreate]
  - type: aws_custom_key_store
    name: xks-1
    kms: kms-1
    region: us-east-1
    connect_disconnect_keystore: CONNECT_KEYSTORE
    aws_param:
      custom_key_store_type: EXTERNAL_KEY_STORE
      xks_proxy_connectivity: PUBLIC_ENDPOINT
    local_hosted_params:
      health_check_key_id: hc-1
      max_credentials: 8
  - type: aws_key
    kms: kms-1
    region: us-east-1
    alias: [app, app-v2]
    tags:
      env: prod
    key_policy:
      key_users: [u1]
      policytemplate: tpl-1
    enable_rotation:
      job_config_id: job-1
"""


def test_load_all_resource_types():
    kms, acl, store, key = load_manifest(MANIFEST)

    assert isinstance(kms, KmsConfig)
    assert kms.regions == ("us-east-1", "eu-west-1")

    assert isinstance(acl, AclConfig)
    assert acl.actions == frozenset({"view", "keycreate"})
    assert acl.subject_type == "group"

    assert isinstance(store, CustomKeyStoreConfig)
    assert store.local_hosted_params.max_credentials == 8
    assert store.aws_param.xks_proxy_connectivity == "PUBLIC_ENDPOINT"

    assert isinstance(key, KeyConfig)
    assert key.alias == ("app", "app-v2")
    assert key.key_policy.policy_template == "tpl-1"
    assert key.key_policy.key_users == ("u1",)
    assert key.enable_rotation.job_config_id == "job-1"


def test_load_from_path(tmp_path):
    path = tmp_path / "cckm.yaml"
    path.write_text(MANIFEST, encoding="utf-8")

    assert len(load_manifest(path)) == 4


def test_replicated_key():
    [key] = load_manifest(
        "resources:\n"
        "  - type: aws_key\n"
        "    kms: kms-1\n"
        "    region: eu-west-1\n"
        "    replicate_key:\n"
        "      key_id: ct-1\n"
        "      make_primary: true\n"
    )

    assert key.replicate_key == ReplicaSource(key_id="ct-1", make_primary=True)


def test_null_resources_is_empty():
    assert load_manifest("resources:\n") == []


def test_empty_manifest():
    assert load_manifest("") == []


@pytest.mark.parametrize(
    "text, message",
    [
        ("resources:\n  - type: aws_vault\n", "unknown resource type"),
        ("resources:\n  - name: x\n", "must be a mapping with a 'type'"),
        ("resources:\n  - type: aws_acl\n    kms_id: k\n    colour: red\n", "Unknown field"),
        ("resources: {}\n", "must be a list"),
        ("resources: \"\"\n", "must be a list"),
        ("resources: 0\n", "must be a list"),
        ("- just\n- a list\n", "must be a mapping"),
        ("resources: [\n", "Invalid manifest"),
    ],
)
def test_malformed_manifests_rejected(text, message):
    with pytest.raises(ValueError, match=message):
        load_manifest(text)
