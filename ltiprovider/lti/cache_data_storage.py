import hashlib
import logging
import math

from django.core.cache import cache

from .entities import ConsumerNonce
from .storage import DjangoDataStore

logger = logging.getLogger(__name__)


def nonce_cache_key(consumer_key, value):
    # Nonces may hold characters memcached rejects in keys
    digest = hashlib.sha256(f"{consumer_key}\n{value}".encode('utf-8')).hexdigest()
    return f'lti_nonce_{digest}'


class CacheDataStorage(DjangoDataStore):
    """
    DjangoDataStore that keeps nonces in the Django cache instead of the
    database. Entries expire with the nonce, so no cleanup is needed.
    """

    def find_nonce(self, consumer_key, value):
        expires = cache.get(nonce_cache_key(consumer_key, value))
        if expires is None:
            return None
        return ConsumerNonce(consumer_key=consumer_key, value=value, expires=expires)

    def save_nonce(self, nonce, now):
        timeout = max(1, math.ceil((nonce.expires - now).total_seconds()))
        # cache.add only writes when the key is absent
        added = cache.add(nonce_cache_key(nonce.consumer_key, nonce.value), nonce.expires, timeout=timeout)
        if not added:
            logger.info(f"Nonce '{nonce.value}' already cached for consumer '{nonce.consumer_key}'")
        return added
