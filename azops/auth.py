"""
Authenticated Azure client context.

A SubscriptionContext bundles a credential with the management clients for
one subscription. Contexts are created explicitly and passed to every
operation instead of relying on a global login session.
"""

import logging
from typing import Optional

from azure.identity import DefaultAzureCredential
from azure.mgmt.containerservice import ContainerServiceClient
from azure.mgmt.keyvault import KeyVaultManagementClient
from azure.mgmt.resource import ResourceManagementClient, SubscriptionClient
from azure.mgmt.resource.locks import ManagementLockClient
from azure.mgmt.web import WebSiteManagementClient

logger = logging.getLogger(__name__)


def get_credential():
    """
    Build the default credential chain.
    
    Service principal environment variables (AZURE_CLIENT_ID,
    AZURE_CLIENT_SECRET, AZURE_TENANT_ID) take precedence, then managed
    identity and the Azure CLI login.
    """
    return DefaultAzureCredential(exclude_interactive_browser_credential=True)


class SubscriptionContext:
    """Management clients for a single subscription, created on first use."""

    def __init__(self, credential, subscription_id: str, display_name: Optional[str] = None):
        if not subscription_id:
            raise ValueError("Subscription ID cannot be empty")
        self.credential = credential
        self.subscription_id = subscription_id
        self.display_name = display_name or subscription_id
        self._resources = None
        self._locks = None
        self._containers = None
        self._keyvault = None
        self._web = None

    def __repr__(self) -> str:
        return f"SubscriptionContext({self.subscription_id!r})"

    @property
    def resources(self) -> ResourceManagementClient:
        if self._resources is None:
            self._resources = ResourceManagementClient(self.credential, self.subscription_id)
        return self._resources

    @property
    def locks(self) -> ManagementLockClient:
        if self._locks is None:
            self._locks = ManagementLockClient(self.credential, self.subscription_id)
        return self._locks

    @property
    def containers(self) -> ContainerServiceClient:
        if self._containers is None:
            self._containers = ContainerServiceClient(self.credential, self.subscription_id)
        return self._containers

    @property
    def keyvault(self) -> KeyVaultManagementClient:
        if self._keyvault is None:
            self._keyvault = KeyVaultManagementClient(self.credential, self.subscription_id)
        return self._keyvault

    @property
    def web(self) -> WebSiteManagementClient:
        if self._web is None:
            self._web = WebSiteManagementClient(self.credential, self.subscription_id)
        return self._web


def subscription_client(credential) -> SubscriptionClient:
    """Create a tenant-level subscription client."""
    return SubscriptionClient(credential)
