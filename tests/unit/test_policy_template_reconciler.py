"""Unit tests for the key policy template reconciler."""
import pytest

from cckm.core.ciphertrust.endpoints import URL_AWS_POLICY_TEMPLATES
from cckm.core.ciphertrust.exceptions import CipherTrustAPIError, ReconcileError
from cckm.core.desired import KeyPolicy, PolicyTemplateConfig
from cckm.core.resources.policy_template import (
    KEYS_ASSOCIATED_MARKER,
    PolicyTemplateReconciler,
    policy_template_payload,
    policy_template_update_payload,
)

TEMPLATE_PATH = f"{URL_AWS_POLICY_TEMPLATES}/tpl-1"


def make_template(**overrides) -> PolicyTemplateConfig:
    base = dict(
        name="default-policy",
        kms="kms-1",
        key_policy=KeyPolicy(key_users=("u1", "u2"), policy='{"Version": "2012-10-17"}'),
        id="tpl-1",
    )
    base.update(overrides)
    return PolicyTemplateConfig(**base)


@pytest.fixture()
def reconciler(gateway):
    return PolicyTemplateReconciler(gateway)


@pytest.fixture()
def template(gateway):
    return gateway.add(URL_AWS_POLICY_TEMPLATES, policy_template_payload(make_template()) | {"id": "tpl-1"})


def test_create(gateway, reconciler):
    result = reconciler.create(make_template(id=""))

    assert result.exists
    assert gateway.mutations[0][2]["key_users"] == ["u1", "u2"]


def test_update_ignores_ordering_and_json_formatting(gateway, template, reconciler):
    desired = make_template(key_policy=KeyPolicy(key_users=("u2", "u1"), policy='{ "Version":"2012-10-17" }'))

    reconciler.update(desired, make_template())

    assert gateway.mutations == []


def test_update_patches_on_change(gateway, template, reconciler):
    desired = make_template(key_policy=KeyPolicy(key_users=("u3",)))

    result = reconciler.update(desired, make_template())

    assert [call[0] for call in gateway.mutations] == ["update"]
    assert result.state.get("key_users") == ("u3",)


def test_update_shrinking_key_users_patches(gateway, template, reconciler):
    desired = make_template(key_policy=KeyPolicy(key_users=("u1",), policy='{"Version": "2012-10-17"}'))

    result = reconciler.update(desired, make_template())

    assert [call[0] for call in gateway.mutations] == ["update"]
    assert result.state.get("key_users") == ("u1",)


def test_update_clearing_key_policy_sends_empty_values(gateway, template, reconciler):
    result = reconciler.update(make_template(key_policy=KeyPolicy()), make_template())

    body = gateway.mutations[0][2]
    assert body["key_users"] == []
    assert body["key_admins"] == []
    assert body["policy"] == ""
    assert result.state.get("key_users") == ()


def test_update_after_clearing_is_stable(gateway, reconciler):
    cleared = make_template(key_policy=KeyPolicy())
    gateway.add(URL_AWS_POLICY_TEMPLATES, policy_template_update_payload(cleared) | {"id": "tpl-1"})

    reconciler.update(cleared, make_template())

    assert gateway.mutations == []


def test_delete(gateway, template, reconciler):
    result = reconciler.delete(make_template())

    assert gateway.mutations == [("delete", TEMPLATE_PATH, None)]
    assert not result.has_warnings


def test_delete_with_keys_associated_is_a_warning(gateway, template, reconciler):
    message = f"template tpl-1 {KEYS_ASSOCIATED_MARKER}"
    gateway.fail("delete", TEMPLATE_PATH, CipherTrustAPIError(400, message, TEMPLATE_PATH))

    result = reconciler.delete(make_template())

    assert [w.category for w in result.warnings] == ["conflict"]


def test_delete_other_error_is_fatal(gateway, template, reconciler):
    gateway.fail("delete", TEMPLATE_PATH, CipherTrustAPIError(500, "internal error", TEMPLATE_PATH))

    with pytest.raises(ReconcileError):
        reconciler.delete(make_template())


def test_read(template, reconciler):
    assert reconciler.read("tpl-1").state.get("name") == "default-policy"
    assert not reconciler.read("tpl-gone").exists
