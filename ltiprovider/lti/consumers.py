"""
Consumer key lookup and trust policy.
"""
import logging
from datetime import datetime
from typing import Mapping, Optional

from .data_store import DataStore
from .entities import ToolConsumer
from .errors import ConsumerPolicyViolation, UnknownConsumer

logger = logging.getLogger(__name__)


class ConsumerRegistry:
    """Resolves consumer keys and decides whether a consumer may launch."""

    def __init__(self, store: DataStore):
        self.store = store

    def resolve(self, key: str) -> Optional[ToolConsumer]:
        return self.store.find_consumer(key)

    def require(self, key: str) -> ToolConsumer:
        consumer = self.resolve(key)
        if consumer is None:
            logger.warning(f"Launch with unknown consumer key '{key}'")
            raise UnknownConsumer('Invalid consumer key.')
        return consumer

    def list_consumers(self) -> list:
        return self.store.list_consumers()

    def check_policy(self, consumer: ToolConsumer, params: Mapping[str, str], now: datetime) -> None:
        """
        Apply the consumer's instance binding, enablement and access window.

        Checks run in a fixed order and the first failure is reported.

        Raises:
            ConsumerPolicyViolation: If the consumer may not launch now
        """
        guid = params.get('tool_consumer_instance_guid')
        if consumer.protected:
            if consumer.consumer_guid is not None:
                if not guid or guid != consumer.consumer_guid:
                    raise ConsumerPolicyViolation('Request is from an invalid tool consumer.')
            elif guid is None:
                raise ConsumerPolicyViolation(
                    'A tool consumer GUID must be included in the launch request.'
                )

        if not consumer.enabled:
            raise ConsumerPolicyViolation('Tool consumer has not been enabled by the tool provider.')
        if consumer.enable_from is not None and consumer.enable_from > now:
            raise ConsumerPolicyViolation('Tool consumer access is not yet available.')
        if consumer.enable_until is not None and consumer.enable_until <= now:
            raise ConsumerPolicyViolation('Tool consumer access has expired.')

    @staticmethod
    def touch(consumer: ToolConsumer, now: datetime) -> bool:
        """Record today's access; True if the stored day changed."""
        today = now.date()
        if consumer.last_access == today:
            return False
        consumer.last_access = today
        return True

    def save(self, consumer: ToolConsumer) -> bool:
        saved = self.store.save_consumer(consumer)
        if not saved:
            logger.warning(f"Unable to save consumer '{consumer.key}'")
        return saved
