"""
Replay protection for signed launches.

In OAuth1 the nonce value must be unique across all requests from the same
consumer. Values are remembered for ``MAX_NONCE_AGE`` so a captured launch
cannot be replayed while its record is alive.
"""
import base64
import binascii
import logging
from datetime import datetime, timedelta

from .data_store import DataStore
from .entities import ConsumerNonce, ToolConsumer

logger = logging.getLogger(__name__)

MAX_NONCE_AGE = timedelta(minutes=30)
MAX_NONCE_LENGTH = 32


def canonicalize_nonce(value: str) -> str:
    """
    Reduce a nonce to at most MAX_NONCE_LENGTH characters.

    Long values are tried as base64 first (padding optional): if they decode
    to printable ASCII the decoded text is used. Whatever remains is truncated.
    """
    if len(value) > MAX_NONCE_LENGTH:
        try:
            decoded = base64.b64decode(value + '=' * (-len(value) % 4), validate=True)
        except (binascii.Error, ValueError):
            decoded = None
        if decoded is not None and all(0x20 <= b <= 0x7f for b in decoded):
            value = decoded.decode('ascii')
    return value[:MAX_NONCE_LENGTH]


class NonceGuard:
    """Check-and-record of nonce values against a data store."""

    def __init__(self, store: DataStore, max_age: timedelta = MAX_NONCE_AGE):
        self.store = store
        self.max_age = max_age

    def check_and_record(self, consumer: ToolConsumer, raw_value: str, observed: datetime) -> bool:
        """
        Record a nonce for ``consumer``.

        Returns:
            True if the value had not been seen (and is now recorded), False
            if it is a replay of an unexpired value
        """
        value = canonicalize_nonce(raw_value)
        existing = self.store.find_nonce(consumer.key, value)
        if existing is not None and existing.expires > observed:
            logger.warning(f"Replayed nonce '{value}' for consumer '{consumer.key}'")
            return False

        nonce = ConsumerNonce(consumer_key=consumer.key, value=value,
                              expires=observed + self.max_age)
        if not self.store.save_nonce(nonce, observed):
            # Another request recorded the same value first
            logger.warning(f"Nonce '{value}' for consumer '{consumer.key}' lost an insert race")
            return False
        return True
