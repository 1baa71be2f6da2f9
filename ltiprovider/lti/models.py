# lti/models.py

from django.db import models
from django.utils import timezone


class LTIConsumer(models.Model):
    """A tool consumer (platform) allowed to launch into this tool."""
    consumer_key = models.CharField(max_length=255, primary_key=True)
    name = models.CharField(max_length=255, blank=True)
    secret = models.CharField(max_length=255)
    lti_version = models.CharField(max_length=12, null=True, blank=True)
    consumer_name = models.CharField(max_length=255, null=True, blank=True)
    consumer_version = models.CharField(max_length=255, null=True, blank=True)
    consumer_guid = models.CharField(max_length=255, null=True, blank=True,
                                     help_text="tool_consumer_instance_guid this key is bound to")
    css_path = models.CharField(max_length=255, null=True, blank=True)
    protected = models.BooleanField(default=False,
                                    help_text="Only accept launches from the bound instance GUID")
    enabled = models.BooleanField(default=False)
    enable_from = models.DateTimeField(null=True, blank=True)
    enable_until = models.DateTimeField(null=True, blank=True)
    last_access = models.DateField(null=True, blank=True)
    created = models.DateTimeField(auto_now_add=True)
    updated = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'LTI consumer'

    def __str__(self):
        return self.name or self.consumer_key


class LTIResourceLink(models.Model):
    consumer = models.ForeignKey(LTIConsumer, on_delete=models.CASCADE, related_name='resource_links')
    resource_link_id = models.CharField(max_length=255)
    context_id = models.CharField(max_length=255, null=True, blank=True)
    title = models.CharField(max_length=255, blank=True)
    settings = models.JSONField(default=dict, blank=True)

    # Set on a shadow link that shares another consumer's resource link
    primary_consumer_key = models.CharField(max_length=255, null=True, blank=True)
    primary_resource_link_id = models.CharField(max_length=255, null=True, blank=True)
    share_approved = models.BooleanField(null=True, blank=True)

    created = models.DateTimeField(auto_now_add=True)
    updated = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'LTI resource link'
        unique_together = ('consumer', 'resource_link_id')
        indexes = [
            models.Index(fields=['primary_consumer_key', 'primary_resource_link_id'],
                         name='lti_primary_link_idx'),
        ]

    def __str__(self):
        return f"{self.consumer_id}/{self.resource_link_id}"


class LTIConsumerNonce(models.Model):
    consumer = models.ForeignKey(LTIConsumer, on_delete=models.CASCADE, related_name='nonces')
    value = models.CharField(max_length=32)
    expires = models.DateTimeField(db_index=True)

    class Meta:
        verbose_name = 'LTI consumer nonce'
        unique_together = ('consumer', 'value')

    def __str__(self):
        return f"{self.consumer_id}: {self.value}"

    def is_expired(self, now=None):
        return self.expires <= (now or timezone.now())

    @classmethod
    def cleanup_expired(cls, now=None):
        """Delete expired nonces. Returns the number removed."""
        count, _ = cls.objects.filter(expires__lte=now or timezone.now()).delete()
        return count


class LTIShareKey(models.Model):
    share_key_id = models.CharField(max_length=32, primary_key=True)
    resource_link = models.ForeignKey(LTIResourceLink, on_delete=models.CASCADE, related_name='share_keys',
                                      help_text="Primary resource link being shared")
    auto_approve = models.BooleanField(default=False)
    expires = models.DateTimeField(db_index=True)

    class Meta:
        verbose_name = 'LTI share key'

    def __str__(self):
        return self.share_key_id

    def is_expired(self, now=None):
        return self.expires <= (now or timezone.now())

    @classmethod
    def cleanup_expired(cls, now=None):
        count, _ = cls.objects.filter(expires__lte=now or timezone.now()).delete()
        return count


class LTIUser(models.Model):
    """Result sourcedid bookkeeping for a user launched from a resource link."""
    consumer_key = models.CharField(max_length=255)
    resource_link_id = models.CharField(max_length=255)
    user_id = models.CharField(max_length=255)
    lti_result_sourcedid = models.CharField(max_length=1024)
    created = models.DateTimeField(auto_now_add=True)
    updated = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'LTI user'
        unique_together = ('consumer_key', 'resource_link_id', 'user_id')

    def __str__(self):
        return f"{self.user_id} ({self.consumer_key}/{self.resource_link_id})"
