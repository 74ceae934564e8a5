"""
Tests for secret rotation and propagation to web apps.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from azops.rotation import (
    RotationError, find_bindings, generate_secret_value, parse_keyvault_reference, rotate_secret,
)

VAULT = "kv-prod"
SECRET = "db-password"
NEW_VERSION = "0123456789abcdef0123456789abcdef"


@pytest.fixture(autouse=True)
def azops_home(tmp_path, monkeypatch):
    monkeypatch.setenv("AZOPS_HOME", str(tmp_path))


class TestReferences:
    """Test Key Vault reference parsing."""
    
    def test_secret_uri_versioned(self):
        ref = parse_keyvault_reference(
            "@Microsoft.KeyVault(SecretUri=https://kv-prod.vault.azure.net/secrets/db-password/abc123)"
        )
        assert (ref.vault, ref.secret, ref.version, ref.style) == ("kv-prod", "db-password", "abc123", "uri")
        assert ref.with_version("v2") == \
            "@Microsoft.KeyVault(SecretUri=https://kv-prod.vault.azure.net/secrets/db-password/v2)"
    
    def test_secret_uri_unversioned(self):
        ref = parse_keyvault_reference("@Microsoft.KeyVault(SecretUri=https://kv-prod.vault.azure.net/secrets/db-password/)")
        assert ref.version is None
        ref = parse_keyvault_reference("@Microsoft.KeyVault(SecretUri=https://kv-prod.vault.azure.net/secrets/db-password)")
        assert ref.secret == "db-password"
        assert ref.version is None
    
    def test_vault_name_form(self):
        ref = parse_keyvault_reference("@Microsoft.KeyVault(VaultName=kv-prod;SecretName=db-password;SecretVersion=v1)")
        assert (ref.vault, ref.secret, ref.version, ref.style) == ("kv-prod", "db-password", "v1", "name")
        assert ref.with_version("v2") == "@Microsoft.KeyVault(VaultName=kv-prod;SecretName=db-password;SecretVersion=v2)"
    
    def test_not_a_reference(self):
        assert parse_keyvault_reference("plain-value") is None
        assert parse_keyvault_reference("@Microsoft.KeyVault(SecretName=x)") is None
        assert parse_keyvault_reference(None) is None
    
    def test_refers_to_is_case_insensitive(self):
        ref = parse_keyvault_reference("@Microsoft.KeyVault(VaultName=KV-Prod;SecretName=DB-Password)")
        assert ref.refers_to(VAULT, SECRET)
        assert not ref.refers_to(VAULT, "other")


def test_generate_secret_value():
    value = generate_secret_value(32)
    assert len(value) >= 40
    assert value != generate_secret_value(32)
    with pytest.raises(ValueError):
        generate_secret_value(8)


def make_web_ctx(apps):
    """apps: {(rg, name): settings dict}"""
    ctx = MagicMock()
    ctx.subscription_id = "sub-1"
    ctx.web.web_apps.list.return_value = [SimpleNamespace(resource_group=rg, name=name) for rg, name in apps]
    ctx.web.web_apps.list_application_settings.side_effect = \
        lambda rg, name: SimpleNamespace(properties=dict(apps[(rg, name)]))
    return ctx


APPS = {
    ("rg-a", "pinned-app"): {
        "DB_PASSWORD": f"@Microsoft.KeyVault(SecretUri=https://{VAULT}.vault.azure.net/secrets/{SECRET}/oldversion)",
        "OTHER": "value",
    },
    ("rg-a", "latest-app"): {
        "DB_PASSWORD": f"@Microsoft.KeyVault(VaultName={VAULT};SecretName={SECRET})",
    },
    ("rg-b", "unrelated-app"): {
        "API_KEY": f"@Microsoft.KeyVault(VaultName={VAULT};SecretName=api-key;SecretVersion=1)",
    },
}


def test_find_bindings():
    bindings = {b.app: b for b in find_bindings(make_web_ctx(APPS), VAULT, SECRET)}
    
    assert set(bindings) == {"pinned-app", "latest-app"}
    assert bindings["pinned-app"].versioned == ["DB_PASSWORD"]
    assert bindings["latest-app"].unversioned == ["DB_PASSWORD"]


def make_secret_client():
    client = MagicMock()
    client.get_secret.return_value = SimpleNamespace(
        properties=SimpleNamespace(content_type="text/plain", tags={"owner": "dba"})
    )
    client.set_secret.return_value = SimpleNamespace(properties=SimpleNamespace(version=NEW_VERSION))
    return client


def test_rotate_secret_propagates():
    ctx = make_web_ctx(APPS)
    client = make_secret_client()
    
    result = rotate_secret(None, VAULT, SECRET, [ctx], secret_client=client)
    
    assert result.version == NEW_VERSION
    name, value = client.set_secret.call_args[0]
    assert name == SECRET
    assert len(value) >= 40
    kwargs = client.set_secret.call_args[1]
    assert kwargs["content_type"] == "text/plain"
    assert kwargs["tags"]["owner"] == "dba"
    assert "rotated_at" in kwargs["tags"]
    
    assert result.updated_apps == ["rg-a/pinned-app"]
    assert result.restarted_apps == ["rg-a/latest-app"]
    rg, app, body = ctx.web.web_apps.update_application_settings.call_args[0]
    assert (rg, app) == ("rg-a", "pinned-app")
    assert body.properties["DB_PASSWORD"].endswith(f"/secrets/{SECRET}/{NEW_VERSION})")
    assert body.properties["OTHER"] == "value"
    ctx.web.web_apps.restart.assert_called_once_with("rg-a", "latest-app")


def test_rotate_secret_without_restart():
    ctx = make_web_ctx(APPS)
    result = rotate_secret(None, VAULT, SECRET, [ctx], restart=False, secret_client=make_secret_client())
    
    assert result.restarted_apps == []
    ctx.web.web_apps.restart.assert_not_called()


def test_rotate_secret_app_failure_counted():
    ctx = make_web_ctx(APPS)
    ctx.web.web_apps.update_application_settings.side_effect = HttpResponseError(message="conflict")
    
    result = rotate_secret(None, VAULT, SECRET, [ctx], secret_client=make_secret_client())
    
    assert result.failed_apps == ["rg-a/pinned-app"]
    assert result.restarted_apps == ["rg-a/latest-app"]


def test_rotate_creates_missing_secret():
    client = make_secret_client()
    client.get_secret.side_effect = ResourceNotFoundError(message="SecretNotFound")
    
    result = rotate_secret(None, VAULT, SECRET, [], secret_client=client)
    
    assert result.version == NEW_VERSION
    assert client.set_secret.call_args[1]["content_type"] is None


def test_rotate_set_failure_raises():
    client = make_secret_client()
    client.set_secret.side_effect = HttpResponseError(message="Forbidden")
    with pytest.raises(RotationError, match="Cannot set secret"):
        rotate_secret(None, VAULT, SECRET, [], secret_client=client)
