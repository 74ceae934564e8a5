"""
azops - Azure operational scripts.

This package provides a CLI for routine Azure administration: restarting
AKS deployments, cleaning up idle resource groups, rotating Key Vault
secrets and auditing vault access policies.
"""

__version__ = "0.1.0"
