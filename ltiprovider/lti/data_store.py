"""
Data store contract for the launch pipeline.

The pipeline only talks to persistence through ``DataStore``. Finds return the
record or ``None``; writes return ``True`` on success. ``MemoryDataStore`` is a
complete in-process implementation used by the unit tests and by embedders
that do not want the ORM; ``storage.DjangoDataStore`` is the database one.
"""
import abc
import copy
import logging
import threading
from datetime import datetime, timezone
from typing import List, Optional

from .entities import (
    ConsumerNonce,
    LaunchUser,
    ResourceLink,
    ResourceLinkShareKey,
    ToolConsumer,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DataStore(abc.ABC):
    """Operations the launch pipeline needs from persistence."""

    # Consumers

    @abc.abstractmethod
    def find_consumer(self, key: str) -> Optional[ToolConsumer]:
        ...

    @abc.abstractmethod
    def save_consumer(self, consumer: ToolConsumer) -> bool:
        ...

    def list_consumers(self) -> List[ToolConsumer]:
        return []

    # Resource links

    @abc.abstractmethod
    def find_resource_link(self, consumer_key: str, resource_link_id: str) -> Optional[ResourceLink]:
        ...

    @abc.abstractmethod
    def save_resource_link(self, resource_link: ResourceLink) -> bool:
        ...

    def list_shares(self, resource_link: ResourceLink) -> List[ResourceLink]:
        """Resource links currently bound to ``resource_link`` as their primary."""
        return []

    # Nonces

    @abc.abstractmethod
    def find_nonce(self, consumer_key: str, value: str) -> Optional[ConsumerNonce]:
        ...

    @abc.abstractmethod
    def save_nonce(self, nonce: ConsumerNonce, now: datetime) -> bool:
        """
        Record a nonce unless an unexpired record for the same value exists.

        Must behave as a single compare-and-insert: when two callers race with
        the same value, exactly one of them gets ``True``.
        """

    # Share keys

    @abc.abstractmethod
    def find_share_key(self, resource_link: ResourceLink, share_key_id: str) -> Optional[ResourceLinkShareKey]:
        """Look up a share key presented by ``resource_link`` (the requester)."""

    @abc.abstractmethod
    def save_share_key(self, share_key: ResourceLinkShareKey) -> bool:
        ...

    @abc.abstractmethod
    def delete_share_key(self, share_key: ResourceLinkShareKey) -> bool:
        ...

    # Users

    @abc.abstractmethod
    def find_user(self, resource_link: ResourceLink, user_id: str) -> Optional[LaunchUser]:
        ...

    @abc.abstractmethod
    def save_user(self, user: LaunchUser) -> bool:
        ...

    @abc.abstractmethod
    def delete_user(self, user: LaunchUser) -> bool:
        ...


class MemoryDataStore(DataStore):
    """
    Dictionary backed store.

    Records are copied on the way in and out so callers never share mutable
    state with the store, the same as with a database.
    """

    def __init__(self):
        self.consumers = {}
        self.resource_links = {}
        self.nonces = {}
        self.share_keys = {}
        self.users = {}
        self._nonce_lock = threading.Lock()

    def find_consumer(self, key):
        return copy.deepcopy(self.consumers.get(key))

    def save_consumer(self, consumer):
        now = utcnow()
        if consumer.created is None:
            consumer.created = now
        consumer.updated = now
        self.consumers[consumer.key] = copy.deepcopy(consumer)
        return True

    def list_consumers(self):
        return [copy.deepcopy(c) for _, c in sorted(self.consumers.items())]

    def find_resource_link(self, consumer_key, resource_link_id):
        return copy.deepcopy(self.resource_links.get((consumer_key, resource_link_id)))

    def save_resource_link(self, resource_link):
        if resource_link.consumer_key not in self.consumers:
            logger.warning(f"Cannot save resource link for unknown consumer '{resource_link.consumer_key}'")
            return False
        now = utcnow()
        if resource_link.created is None:
            resource_link.created = now
        resource_link.updated = now
        key = (resource_link.consumer_key, resource_link.resource_link_id)
        self.resource_links[key] = copy.deepcopy(resource_link)
        return True

    def list_shares(self, resource_link):
        return [
            copy.deepcopy(link) for link in self.resource_links.values()
            if link.primary_consumer_key == resource_link.consumer_key
            and link.primary_resource_link_id == resource_link.resource_link_id
        ]

    def find_nonce(self, consumer_key, value):
        return copy.deepcopy(self.nonces.get((consumer_key, value)))

    def save_nonce(self, nonce, now):
        key = (nonce.consumer_key, nonce.value)
        with self._nonce_lock:
            existing = self.nonces.get(key)
            if existing is not None and existing.expires > now:
                return False
            self.nonces[key] = copy.deepcopy(nonce)
        return True

    def purge_expired_nonces(self, now: datetime) -> int:
        with self._nonce_lock:
            expired = [key for key, nonce in self.nonces.items() if nonce.expires <= now]
            for key in expired:
                del self.nonces[key]
        return len(expired)

    def find_share_key(self, resource_link, share_key_id):
        share_key = self.share_keys.get(share_key_id)
        if share_key is not None and share_key.is_expired(utcnow()):
            del self.share_keys[share_key_id]
            return None
        return copy.deepcopy(share_key)

    def save_share_key(self, share_key):
        self.share_keys[share_key.share_key_id] = copy.deepcopy(share_key)
        return True

    def delete_share_key(self, share_key):
        return self.share_keys.pop(share_key.share_key_id, None) is not None

    def find_user(self, resource_link, user_id):
        key = (resource_link.consumer_key, resource_link.resource_link_id, user_id)
        return copy.deepcopy(self.users.get(key))

    def save_user(self, user):
        now = utcnow()
        if user.created is None:
            user.created = now
        user.updated = now
        self.users[(user.consumer_key, user.resource_link_id, user.user_id)] = copy.deepcopy(user)
        return True

    def delete_user(self, user):
        key = (user.consumer_key, user.resource_link_id, user.user_id)
        return self.users.pop(key, None) is not None
