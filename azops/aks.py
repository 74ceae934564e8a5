"""
Restart a Kubernetes deployment inside an AKS cluster.

The restart runs through the AKS run-command API, so kubectl executes
inside the cluster and the caller needs no kubeconfig or cluster RBAC
setup, only Azure access to the managed cluster.
"""

import logging
import shlex
from dataclasses import dataclass
from typing import Optional

from azure.core.exceptions import AzureError
from azure.mgmt.containerservice.models import RunCommandRequest

from .events import EventTypes, emit_event
from .state import new_run_id

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 600


class RestartError(Exception):
    """AKS deployment restart failed."""

    def __init__(self, message: str, logs: str = ""):
        super().__init__(message)
        self.logs = logs


@dataclass
class RestartResult:
    """Result of a rollout restart."""
    resource_group: str
    cluster: str
    namespace: str
    deployment: str
    exit_code: int
    logs: str
    run_id: str = ""


def rollout_restart_command(deployment: str, namespace: str) -> str:
    """Build the kubectl command that restarts a deployment."""
    return f"kubectl rollout restart deployment {shlex.quote(deployment)} -n {shlex.quote(namespace)}"


def restart_deployment(sub_ctx, resource_group: str, cluster: str, namespace: str, deployment: str,
                       timeout: Optional[int] = DEFAULT_TIMEOUT_SECONDS, run_id: Optional[str] = None) -> RestartResult:
    """
    Trigger `kubectl rollout restart` for a deployment via AKS run-command.
    
    Args:
        sub_ctx: SubscriptionContext of the cluster's subscription
        resource_group: Resource group of the cluster
        cluster: AKS cluster name
        namespace: Kubernetes namespace
        deployment: Deployment name
        timeout: Seconds to wait for the command result
        run_id: Optional run ID for the event trail
        
    Returns:
        RestartResult
        
    Raises:
        RestartError: If the command could not run or exited non-zero
    """
    for label, value in (("resource group", resource_group), ("cluster", cluster),
                         ("namespace", namespace), ("deployment", deployment)):
        if not value or not value.strip():
            raise ValueError(f"{label} must not be empty")
    
    run_id = run_id or new_run_id()
    command = rollout_restart_command(deployment, namespace)
    target = {"subscription": sub_ctx.subscription_id, "resource_group": resource_group,
              "cluster": cluster, "namespace": namespace, "deployment": deployment}
    logger.info(f"Restarting deployment {deployment} in namespace {namespace} on {cluster}")
    emit_event(run_id, EventTypes.AKS_RESTART_START, dict(target, command=command))
    
    try:
        poller = sub_ctx.containers.managed_clusters.begin_run_command(
            resource_group, cluster, RunCommandRequest(command=command)
        )
        result = poller.result(timeout=timeout)
    except AzureError as e:
        emit_event(run_id, EventTypes.AKS_RESTART_FAILED, dict(target, error=str(e)))
        raise RestartError(f"Run command on {cluster} failed: {e}")
    
    if result is None:
        emit_event(run_id, EventTypes.AKS_RESTART_FAILED, dict(target, error="timeout"))
        raise RestartError(f"Run command on {cluster} returned no result within {timeout}s")
    
    logs = result.logs or ""
    exit_code = result.exit_code if result.exit_code is not None else -1
    state = str(result.provisioning_state or "")
    
    if state.lower() == "failed" or exit_code != 0:
        reason = result.reason or f"exit code {exit_code}"
        logger.error(f"Restart of {deployment} failed: {reason}")
        emit_event(run_id, EventTypes.AKS_RESTART_FAILED, dict(target, error=reason, exit_code=exit_code))
        raise RestartError(f"Restart of {deployment} failed: {reason}", logs=logs)
    
    logger.info(f"Restart of {deployment} triggered")
    emit_event(run_id, EventTypes.AKS_RESTART_DONE, dict(target, exit_code=exit_code))
    return RestartResult(
        resource_group=resource_group,
        cluster=cluster,
        namespace=namespace,
        deployment=deployment,
        exit_code=exit_code,
        logs=logs,
        run_id=run_id,
    )
