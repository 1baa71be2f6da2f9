"""
Shared resource link arrangements.

A resource link owner can issue a share key. When another resource link
launches with that key (as ``custom_share_key``) it becomes a shadow of the
owner's link: once approved, its launches are treated as launches of the
primary resource link.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Mapping, Optional

from .data_store import DataStore, utcnow
from .entities import ResourceLink, ResourceLinkShareKey, ToolConsumer
from .errors import (
    SelfShareRequested,
    SharePendingApproval,
    ShareResolutionFailed,
    SharingDisabled,
    UnexpectedShare,
)

logger = logging.getLogger(__name__)

SHARE_KEY_PARAM = 'custom_share_key'

DEFAULT_SHARE_KEY_LIFE = timedelta(hours=24)
MAX_SHARE_KEY_LIFE = timedelta(hours=168)
DEFAULT_SHARE_KEY_LENGTH = 8
MIN_SHARE_KEY_LENGTH = 5
MAX_SHARE_KEY_LENGTH = 32

# Unambiguous characters only, share keys are typed in by people
SHARE_KEY_ALPHABET = 'abcdefghjkmnpqrstuvwxyzABCDEFGHJKLMNPQRSTUVWXYZ23456789'


class ShareResolver:
    """Decides which resource link a launch really belongs to."""

    def __init__(self, store: DataStore, allow_sharing: bool = False):
        self.store = store
        self.allow_sharing = allow_sharing

    def resolve(self, consumer: ToolConsumer, resource_link: ResourceLink,
                params: Mapping[str, str]) -> ResourceLink:
        """
        Apply any share key in ``params`` and return the effective resource link.

        ``resource_link`` is updated in place when a new share is bound to it.

        Raises:
            SharingDisabled, SelfShareRequested, SharePendingApproval,
            ShareResolutionFailed: If the launch may not proceed
        """
        save_shadow = True
        key = resource_link.primary_consumer_key
        link_id = resource_link.primary_resource_link_id

        share_key_value = params.get(SHARE_KEY_PARAM, '').strip()
        if share_key_value:
            if not self.allow_sharing:
                raise SharingDisabled()

            share_key = self.store.find_share_key(resource_link, share_key_value)
            if share_key is not None:
                key = share_key.primary_consumer_key
                link_id = share_key.primary_resource_link_id
                if key == consumer.key and link_id == resource_link.resource_link_id:
                    raise SelfShareRequested()

                # Claim the key first; only the launch that deletes it may bind
                if not self.store.delete_share_key(share_key):
                    logger.warning(f"Share key '{share_key.share_key_id}' was claimed by another launch")
                    raise ShareResolutionFailed('This share key has already been used.')

                resource_link.bind_primary(key, link_id, share_key.auto_approve)
                if not self.store.save_resource_link(resource_link):
                    raise ShareResolutionFailed('An error occurred initialising your share arrangement.')
                save_shadow = False
                logger.info(
                    f"Resource link '{consumer.key}/{resource_link.resource_link_id}' "
                    f"now shares '{key}/{link_id}'"
                )

            if key is None:
                raise ShareResolutionFailed(
                    'You have requested to share a resource link but none is available.'
                )
            if not resource_link.share_approved:
                raise SharePendingApproval()
        elif key is not None:
            raise UnexpectedShare()

        if key is None:
            return resource_link

        primary_consumer = self.store.find_consumer(key)
        primary_link = None
        if primary_consumer is not None:
            primary_link = self.store.find_resource_link(key, link_id)
        if primary_link is None:
            raise ShareResolutionFailed('Unable to load resource link being shared.')

        if save_shadow:
            self.store.save_resource_link(resource_link)
        return primary_link

    # =========================================================================
    # SHARE ADMINISTRATION
    # =========================================================================

    def issue_share_key(self, resource_link: ResourceLink, auto_approve: bool = False,
                        life: timedelta = DEFAULT_SHARE_KEY_LIFE,
                        length: Optional[int] = None,
                        now: Optional[datetime] = None) -> ResourceLinkShareKey:
        """
        Create a share key pointing at ``resource_link``.

        Args:
            resource_link: The primary resource link to be shared
            auto_approve: Approve the share as soon as the key is used
            life: How long the key stays valid (capped at one week)
            length: Number of characters in the key (5 to 32)
            now: Issue time, defaults to the current time

        Returns:
            The saved share key
        """
        life = min(life, MAX_SHARE_KEY_LIFE)
        length = length or DEFAULT_SHARE_KEY_LENGTH
        length = max(MIN_SHARE_KEY_LENGTH, min(length, MAX_SHARE_KEY_LENGTH))
        now = now or utcnow()

        share_key = ResourceLinkShareKey(
            share_key_id=''.join(secrets.choice(SHARE_KEY_ALPHABET) for _ in range(length)),
            primary_consumer_key=resource_link.consumer_key,
            primary_resource_link_id=resource_link.resource_link_id,
            auto_approve=auto_approve,
            expires=now + life,
        )
        if not self.store.save_share_key(share_key):
            raise ShareResolutionFailed('Unable to save share key.')
        return share_key

    def approve_share(self, consumer_key: str, resource_link_id: str, approved: bool = True) -> bool:
        """Approve (or suspend) a shadow resource link's share arrangement."""
        link = self.store.find_resource_link(consumer_key, resource_link_id)
        if link is None or not link.has_primary:
            return False
        link.share_approved = approved
        return self.store.save_resource_link(link)

    def list_shares(self, resource_link: ResourceLink) -> list:
        return self.store.list_shares(resource_link)
