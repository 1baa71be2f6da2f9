"""
Django Admin configuration for LTI models.
"""
from django.contrib import admin

from .models import LTIConsumer, LTIConsumerNonce, LTIResourceLink, LTIShareKey, LTIUser


@admin.register(LTIConsumer)
class LTIConsumerAdmin(admin.ModelAdmin):
    """Admin for registered tool consumers."""

    list_display = [
        'consumer_key', 'name', 'consumer_name', 'consumer_guid',
        'enabled', 'protected', 'last_access'
    ]
    list_filter = ['enabled', 'protected', 'lti_version']
    search_fields = ['consumer_key', 'name', 'consumer_name', 'consumer_guid']
    readonly_fields = ['lti_version', 'consumer_name', 'consumer_version', 'css_path',
                       'last_access', 'created', 'updated']
    ordering = ['consumer_key']

    fieldsets = [
        ('Credentials', {
            'fields': ['consumer_key', 'name', 'secret']
        }),
        ('Access', {
            'fields': ['enabled', 'enable_from', 'enable_until', 'protected', 'consumer_guid']
        }),
        ('Reported Profile', {
            'fields': ['lti_version', 'consumer_name', 'consumer_version', 'css_path'],
            'classes': ['collapse']
        }),
        ('Timestamps', {
            'fields': ['last_access', 'created', 'updated']
        }),
    ]


@admin.register(LTIResourceLink)
class LTIResourceLinkAdmin(admin.ModelAdmin):
    list_display = [
        'resource_link_id', 'consumer', 'title', 'context_id',
        'primary_consumer_key', 'primary_resource_link_id', 'share_approved', 'updated'
    ]
    list_filter = ['consumer', 'share_approved']
    search_fields = ['resource_link_id', 'title', 'context_id', 'primary_resource_link_id']
    readonly_fields = ['created', 'updated']
    ordering = ['-updated']

    actions = ['approve_shares', 'revoke_shares']

    @admin.action(description='Approve selected shares')
    def approve_shares(self, request, queryset):
        count = queryset.filter(primary_consumer_key__isnull=False).update(share_approved=True)
        self.message_user(request, f"Approved {count} shared resource links.")

    @admin.action(description='Revoke selected shares')
    def revoke_shares(self, request, queryset):
        count = queryset.filter(primary_consumer_key__isnull=False).update(share_approved=False)
        self.message_user(request, f"Revoked {count} shared resource links.")


@admin.register(LTIConsumerNonce)
class LTIConsumerNonceAdmin(admin.ModelAdmin):
    """Nonces are written by launches only."""

    list_display = ['value', 'consumer', 'expires', 'is_expired_display']
    list_filter = ['consumer']
    search_fields = ['value']
    ordering = ['-expires']

    @admin.display(description='Expired?', boolean=True)
    def is_expired_display(self, obj):
        return obj.is_expired()

    actions = ['cleanup_expired']

    @admin.action(description='Delete expired nonces')
    def cleanup_expired(self, request, queryset):
        count = LTIConsumerNonce.cleanup_expired()
        self.message_user(request, f"Cleaned up {count} expired nonces.")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(LTIShareKey)
class LTIShareKeyAdmin(admin.ModelAdmin):
    list_display = ['share_key_id', 'resource_link', 'auto_approve', 'expires']
    list_filter = ['auto_approve']
    search_fields = ['share_key_id']
    ordering = ['-expires']


@admin.register(LTIUser)
class LTIUserAdmin(admin.ModelAdmin):
    list_display = ['user_id', 'consumer_key', 'resource_link_id', 'updated']
    search_fields = ['user_id', 'consumer_key', 'resource_link_id', 'lti_result_sourcedid']
    readonly_fields = ['created', 'updated']
    ordering = ['-updated']
