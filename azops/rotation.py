"""
Key Vault secret rotation with propagation to bound web apps.

A web app is bound to a secret when one of its app settings is a Key Vault
reference to that secret. References pinned to a version are rewritten to
the new version; unpinned references resolve to the latest version, so
those apps are restarted to pick it up.
"""

import logging
import re
import secrets as token_source
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.keyvault.secrets import SecretClient
from azure.mgmt.web.models import StringDictionary

from .events import EventTypes, emit_event
from .state import new_run_id

logger = logging.getLogger(__name__)

DEFAULT_SECRET_BYTES = 32

_SECRET_URI_RE = re.compile(
    r"^@Microsoft\.KeyVault\(\s*SecretUri\s*=\s*"
    r"(?P<scheme>https://)(?P<vault>[^./]+)(?P<suffix>\.vault\.[^/]+)/secrets/"
    r"(?P<secret>[^/)\s]+)(?:/(?P<version>[^/)\s]*))?/?\s*\)$",
    re.IGNORECASE,
)
_VAULT_NAME_RE = re.compile(r"^@Microsoft\.KeyVault\((?P<body>[^)]*)\)$", re.IGNORECASE)


class RotationError(Exception):
    """Secret rotation failed."""
    pass


@dataclass
class KeyVaultReference:
    """A parsed @Microsoft.KeyVault(...) app setting value."""
    vault: str
    secret: str
    version: Optional[str]
    style: str  # "uri" or "name"
    host_suffix: str = ".vault.azure.net"

    def refers_to(self, vault: str, secret: str) -> bool:
        return self.vault.lower() == vault.lower() and self.secret.lower() == secret.lower()

    def with_version(self, version: str) -> str:
        if self.style == "uri":
            return f"@Microsoft.KeyVault(SecretUri=https://{self.vault}{self.host_suffix}/secrets/{self.secret}/{version})"
        return f"@Microsoft.KeyVault(VaultName={self.vault};SecretName={self.secret};SecretVersion={version})"


@dataclass
class AppBinding:
    """App settings of one web app that reference the rotated secret."""
    subscription_id: str
    resource_group: str
    app: str
    settings: Dict[str, str]
    versioned: List[str] = field(default_factory=list)
    unversioned: List[str] = field(default_factory=list)


@dataclass
class RotationResult:
    """Outcome of a rotation."""
    run_id: str
    vault: str
    secret: str
    version: str
    updated_apps: List[str] = field(default_factory=list)
    restarted_apps: List[str] = field(default_factory=list)
    failed_apps: List[str] = field(default_factory=list)


def vault_url(vault: str) -> str:
    return f"https://{vault}.vault.azure.net"


def parse_keyvault_reference(value: Optional[str]) -> Optional[KeyVaultReference]:
    """
    Parse a Key Vault reference app setting.
    
    Args:
        value: App setting value
        
    Returns:
        KeyVaultReference, or None if the value is not a reference
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    
    match = _SECRET_URI_RE.match(text)
    if match:
        return KeyVaultReference(
            vault=match.group("vault"),
            secret=match.group("secret"),
            version=match.group("version") or None,
            style="uri",
            host_suffix=match.group("suffix"),
        )
    
    match = _VAULT_NAME_RE.match(text)
    if not match:
        return None
    parts = {}
    for item in match.group("body").split(";"):
        if "=" in item:
            key, val = item.split("=", 1)
            parts[key.strip().lower()] = val.strip()
    if "vaultname" not in parts or "secretname" not in parts:
        return None
    return KeyVaultReference(
        vault=parts["vaultname"],
        secret=parts["secretname"],
        version=parts.get("secretversion") or None,
        style="name",
    )


def generate_secret_value(num_bytes: int = DEFAULT_SECRET_BYTES) -> str:
    """Generate a URL-safe random secret value."""
    if num_bytes < 16:
        raise ValueError(f"Secret length must be at least 16 bytes, got {num_bytes}")
    return token_source.token_urlsafe(num_bytes)


def find_bindings(sub_ctx, vault: str, secret: str) -> List[AppBinding]:
    """
    Find web apps in a subscription with settings referencing a secret.
    
    Apps whose settings cannot be read are logged and skipped.
    """
    bindings = []
    for site in sub_ctx.web.web_apps.list():
        try:
            settings = sub_ctx.web.web_apps.list_application_settings(site.resource_group, site.name)
        except AzureError as e:
            logger.warning(f"Cannot read app settings of {site.name}: {e}")
            continue
        
        values = dict(settings.properties or {})
        binding = AppBinding(
            subscription_id=sub_ctx.subscription_id,
            resource_group=site.resource_group,
            app=site.name,
            settings=values,
        )
        for name, value in values.items():
            ref = parse_keyvault_reference(value)
            if ref is None or not ref.refers_to(vault, secret):
                continue
            if ref.version:
                binding.versioned.append(name)
            else:
                binding.unversioned.append(name)
        
        if binding.versioned or binding.unversioned:
            bindings.append(binding)
    return bindings


def propagate(sub_ctx, binding: AppBinding, version: str, restart: bool = True) -> List[str]:
    """
    Point a bound app at a new secret version.
    
    Returns:
        Actions taken, a subset of ["updated", "restarted"]
    """
    actions = []
    if binding.versioned:
        new_settings = dict(binding.settings)
        for name in binding.versioned:
            ref = parse_keyvault_reference(new_settings[name])
            new_settings[name] = ref.with_version(version)
        sub_ctx.web.web_apps.update_application_settings(
            binding.resource_group, binding.app, StringDictionary(properties=new_settings)
        )
        actions.append("updated")
        logger.info(f"Updated {len(binding.versioned)} setting(s) on {binding.app}")
    elif binding.unversioned and restart:
        sub_ctx.web.web_apps.restart(binding.resource_group, binding.app)
        actions.append("restarted")
        logger.info(f"Restarted {binding.app} to load the latest secret version")
    return actions


def rotate_secret(credential, vault: str, secret: str, subscriptions: Iterable, num_bytes: int = DEFAULT_SECRET_BYTES,
                  restart: bool = True, run_id: Optional[str] = None,
                  secret_client: Optional[SecretClient] = None) -> RotationResult:
    """
    Rotate a Key Vault secret and propagate it to bound web apps.
    
    Args:
        credential: Azure credential
        vault: Key Vault name
        secret: Secret name
        subscriptions: SubscriptionContext objects to search for bound apps
        num_bytes: Random bytes in the new value
        restart: Restart apps that use unversioned references
        run_id: Optional run ID
        secret_client: Client to use instead of one built from the credential
        
    Returns:
        RotationResult
        
    Raises:
        RotationError: If the new secret version could not be written
    """
    run_id = run_id or new_run_id()
    client = secret_client or SecretClient(vault_url=vault_url(vault), credential=credential)
    
    emit_event(run_id, EventTypes.RUN_START, {"command": "rotate-secret", "vault": vault, "secret": secret})
    
    try:
        current = client.get_secret(secret)
        content_type = current.properties.content_type
        tags = dict(current.properties.tags or {})
    except ResourceNotFoundError:
        logger.warning(f"Secret {secret} does not exist in {vault}; creating it")
        content_type, tags = None, {}
    except AzureError as e:
        raise RotationError(f"Cannot read secret {secret} in {vault}: {e}")
    
    tags["rotated_at"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    try:
        new_secret = client.set_secret(secret, generate_secret_value(num_bytes), content_type=content_type, tags=tags)
    except AzureError as e:
        raise RotationError(f"Cannot set secret {secret} in {vault}: {e}")
    
    version = new_secret.properties.version
    logger.info(f"Secret {secret} in {vault} rotated to version {version}")
    emit_event(run_id, EventTypes.SECRET_ROTATED, {"vault": vault, "secret": secret, "version": version})
    result = RotationResult(run_id=run_id, vault=vault, secret=secret, version=version)
    
    for sub_ctx in subscriptions:
        try:
            bindings = find_bindings(sub_ctx, vault, secret)
        except AzureError as e:
            logger.error(f"Cannot list web apps in {sub_ctx.subscription_id}: {e}")
            emit_event(run_id, EventTypes.SUBSCRIPTION_ERROR, {"subscription": sub_ctx.subscription_id, "error": str(e)})
            continue
        
        for binding in bindings:
            app_id = f"{binding.resource_group}/{binding.app}"
            try:
                actions = propagate(sub_ctx, binding, version, restart=restart)
            except AzureError as e:
                logger.error(f"Failed to propagate secret to {app_id}: {e}")
                result.failed_apps.append(app_id)
                emit_event(run_id, EventTypes.APP_ERROR, {"app": app_id, "error": str(e)})
                continue
            if "updated" in actions:
                result.updated_apps.append(app_id)
                emit_event(run_id, EventTypes.APP_SETTINGS_UPDATED, {"app": app_id, "settings": binding.versioned})
            if "restarted" in actions:
                result.restarted_apps.append(app_id)
                emit_event(run_id, EventTypes.APP_RESTARTED, {"app": app_id})
    
    emit_event(run_id, EventTypes.RUN_DONE, {
        "updated": len(result.updated_apps),
        "restarted": len(result.restarted_apps),
        "failed": len(result.failed_apps),
    })
    return result
