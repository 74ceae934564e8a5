"""
Subscription iteration.
"""

import logging
from typing import Iterator, List, Optional

from azure.core.exceptions import AzureError

from .auth import SubscriptionContext, subscription_client

logger = logging.getLogger(__name__)


def _is_enabled(subscription) -> bool:
    state = getattr(subscription, "state", None)
    if state is None:
        return True
    return str(getattr(state, "value", state)).lower() == "enabled"


def discover_subscriptions(credential) -> List[SubscriptionContext]:
    """
    List enabled subscriptions visible to the credential.
    
    Args:
        credential: Azure credential
        
    Returns:
        Subscription contexts, one per enabled subscription
    """
    contexts = []
    for sub in subscription_client(credential).subscriptions.list():
        if not _is_enabled(sub):
            logger.info(f"Skipping subscription {sub.subscription_id} in state {sub.state}")
            continue
        contexts.append(SubscriptionContext(credential, sub.subscription_id, sub.display_name))
    return contexts


def iter_subscriptions(credential, subscription_ids: Optional[List[str]] = None) -> Iterator[SubscriptionContext]:
    """
    Yield one authenticated context per subscription.
    
    Args:
        credential: Azure credential
        subscription_ids: Explicit subscription IDs; when empty, all enabled
            subscriptions are discovered
        
    Yields:
        SubscriptionContext objects, in input order, without duplicates
    """
    if not subscription_ids:
        try:
            contexts = discover_subscriptions(credential)
        except AzureError as e:
            logger.error(f"Failed to list subscriptions: {e}")
            return
        if not contexts:
            logger.warning("No enabled subscriptions visible to the current credential")
        yield from contexts
        return
    
    seen = set()
    for sub_id in subscription_ids:
        sub_id = sub_id.strip()
        if not sub_id or sub_id in seen:
            continue
        seen.add(sub_id)
        yield SubscriptionContext(credential, sub_id)
