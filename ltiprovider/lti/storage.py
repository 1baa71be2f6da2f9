"""
Database backed data store.

Maps the launch pipeline records onto the ``lti`` models. Configured as the
default ``LTI_PROVIDER['DATA_STORE']``.
"""
import logging

from django.db import IntegrityError, transaction

from .data_store import DataStore, utcnow
from .entities import (
    ConsumerNonce,
    LaunchUser,
    ResourceLink,
    ResourceLinkShareKey,
    ToolConsumer,
)
from .models import LTIConsumer, LTIConsumerNonce, LTIResourceLink, LTIShareKey, LTIUser

logger = logging.getLogger(__name__)

CONSUMER_FIELDS = (
    'name', 'secret', 'lti_version', 'consumer_name', 'consumer_version',
    'consumer_guid', 'css_path', 'protected', 'enabled', 'enable_from',
    'enable_until', 'last_access',
)

RESOURCE_LINK_FIELDS = (
    'context_id', 'title', 'settings', 'primary_consumer_key',
    'primary_resource_link_id', 'share_approved',
)


# ==============================================================================
# Model <-> record conversion
# ==============================================================================

def consumer_from_model(obj: LTIConsumer) -> ToolConsumer:
    return ToolConsumer(
        key=obj.consumer_key,
        created=obj.created,
        updated=obj.updated,
        **{name: getattr(obj, name) for name in CONSUMER_FIELDS},
    )


def resource_link_from_model(obj: LTIResourceLink) -> ResourceLink:
    values = {name: getattr(obj, name) for name in RESOURCE_LINK_FIELDS}
    values['settings'] = dict(values['settings'] or {})
    return ResourceLink(
        consumer_key=obj.consumer_id,
        resource_link_id=obj.resource_link_id,
        created=obj.created,
        updated=obj.updated,
        **values,
    )


def share_key_from_model(obj: LTIShareKey) -> ResourceLinkShareKey:
    return ResourceLinkShareKey(
        share_key_id=obj.share_key_id,
        primary_consumer_key=obj.resource_link.consumer_id,
        primary_resource_link_id=obj.resource_link.resource_link_id,
        auto_approve=obj.auto_approve,
        expires=obj.expires,
    )


class DjangoDataStore(DataStore):
    """Data store using the Django ORM."""

    # Consumers

    def find_consumer(self, key):
        try:
            return consumer_from_model(LTIConsumer.objects.get(consumer_key=key))
        except LTIConsumer.DoesNotExist:
            return None

    def save_consumer(self, consumer):
        obj, _ = LTIConsumer.objects.update_or_create(
            consumer_key=consumer.key,
            defaults={name: getattr(consumer, name) for name in CONSUMER_FIELDS},
        )
        consumer.created = obj.created
        consumer.updated = obj.updated
        return True

    def list_consumers(self):
        return [consumer_from_model(obj) for obj in LTIConsumer.objects.order_by('consumer_key')]

    # Resource links

    def find_resource_link(self, consumer_key, resource_link_id):
        try:
            obj = LTIResourceLink.objects.get(consumer_id=consumer_key, resource_link_id=resource_link_id)
        except LTIResourceLink.DoesNotExist:
            return None
        return resource_link_from_model(obj)

    def save_resource_link(self, resource_link):
        if not LTIConsumer.objects.filter(consumer_key=resource_link.consumer_key).exists():
            logger.warning(f"Cannot save resource link for unknown consumer '{resource_link.consumer_key}'")
            return False
        obj, _ = LTIResourceLink.objects.update_or_create(
            consumer_id=resource_link.consumer_key,
            resource_link_id=resource_link.resource_link_id,
            defaults={name: getattr(resource_link, name) for name in RESOURCE_LINK_FIELDS},
        )
        resource_link.created = obj.created
        resource_link.updated = obj.updated
        return True

    def list_shares(self, resource_link):
        links = LTIResourceLink.objects.filter(
            primary_consumer_key=resource_link.consumer_key,
            primary_resource_link_id=resource_link.resource_link_id,
        ).order_by('consumer_id', 'resource_link_id')
        return [resource_link_from_model(obj) for obj in links]

    # Nonces

    def find_nonce(self, consumer_key, value):
        obj = LTIConsumerNonce.objects.filter(consumer_id=consumer_key, value=value).first()
        if obj is None:
            return None
        return ConsumerNonce(consumer_key=obj.consumer_id, value=obj.value, expires=obj.expires)

    def save_nonce(self, nonce, now):
        try:
            with transaction.atomic():
                # An expired row for the same value may be reused
                LTIConsumerNonce.objects.filter(
                    consumer_id=nonce.consumer_key, value=nonce.value, expires__lte=now,
                ).delete()
                LTIConsumerNonce.objects.create(
                    consumer_id=nonce.consumer_key, value=nonce.value, expires=nonce.expires,
                )
        except IntegrityError:
            logger.info(f"Nonce '{nonce.value}' already recorded for consumer '{nonce.consumer_key}'")
            return False
        return True

    # Share keys

    def find_share_key(self, resource_link, share_key_id):
        obj = LTIShareKey.objects.select_related('resource_link').filter(share_key_id=share_key_id).first()
        if obj is None:
            return None
        if obj.is_expired(utcnow()):
            obj.delete()
            return None
        return share_key_from_model(obj)

    def save_share_key(self, share_key):
        primary = LTIResourceLink.objects.filter(
            consumer_id=share_key.primary_consumer_key,
            resource_link_id=share_key.primary_resource_link_id,
        ).first()
        if primary is None:
            logger.warning(
                f"Cannot save share key for unknown resource link "
                f"'{share_key.primary_consumer_key}/{share_key.primary_resource_link_id}'"
            )
            return False
        LTIShareKey.objects.update_or_create(
            share_key_id=share_key.share_key_id,
            defaults={
                'resource_link': primary,
                'auto_approve': share_key.auto_approve,
                'expires': share_key.expires,
            },
        )
        return True

    def delete_share_key(self, share_key):
        count, _ = LTIShareKey.objects.filter(share_key_id=share_key.share_key_id).delete()
        return count > 0

    # Users

    def find_user(self, resource_link, user_id):
        obj = LTIUser.objects.filter(
            consumer_key=resource_link.consumer_key,
            resource_link_id=resource_link.resource_link_id,
            user_id=user_id,
        ).first()
        if obj is None:
            return None
        return LaunchUser(
            consumer_key=obj.consumer_key,
            resource_link_id=obj.resource_link_id,
            user_id=obj.user_id,
            context_id=resource_link.context_id,
            lti_result_sourcedid=obj.lti_result_sourcedid,
            created=obj.created,
            updated=obj.updated,
        )

    def save_user(self, user):
        obj, _ = LTIUser.objects.update_or_create(
            consumer_key=user.consumer_key,
            resource_link_id=user.resource_link_id,
            user_id=user.user_id,
            defaults={'lti_result_sourcedid': user.lti_result_sourcedid or ''},
        )
        user.created = obj.created
        user.updated = obj.updated
        return True

    def delete_user(self, user):
        count, _ = LTIUser.objects.filter(
            consumer_key=user.consumer_key,
            resource_link_id=user.resource_link_id,
            user_id=user.user_id,
        ).delete()
        return count > 0
