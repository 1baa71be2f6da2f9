"""
Plain records passed between the launch pipeline and its data store.

These carry no persistence behaviour of their own; see ``data_store.py`` for
the store contract and ``models.py`` for the ORM tables that mirror them.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

# Separator used when building scoped user IDs
ID_SCOPE_SEPARATOR = ':'

ID_SCOPE_ID_ONLY = 0
ID_SCOPE_GLOBAL = 1
ID_SCOPE_CONTEXT = 2
ID_SCOPE_RESOURCE = 3

ROLE_PREFIX = 'urn:lti:role:ims/lis/'


@dataclass
class ToolConsumer:
    """A calling platform identified by its key/secret pair."""
    key: str
    secret: str = ''
    name: str = ''
    consumer_name: Optional[str] = None
    consumer_version: Optional[str] = None
    consumer_guid: Optional[str] = None
    css_path: Optional[str] = None
    lti_version: Optional[str] = None
    protected: bool = False
    enabled: bool = False
    enable_from: Optional[datetime] = None
    enable_until: Optional[datetime] = None
    last_access: Optional[date] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None


@dataclass
class ResourceLink:
    """A launch point (e.g. an assignment) inside a consumer's context."""
    consumer_key: str
    resource_link_id: str
    context_id: Optional[str] = None
    title: str = ''
    settings: dict = field(default_factory=dict)
    primary_consumer_key: Optional[str] = None
    primary_resource_link_id: Optional[str] = None
    share_approved: Optional[bool] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None

    def __post_init__(self):
        if (self.primary_consumer_key is None) != (self.primary_resource_link_id is None):
            raise ValueError(
                "primary_consumer_key and primary_resource_link_id must be set together"
            )

    @property
    def has_primary(self) -> bool:
        return self.primary_consumer_key is not None

    def bind_primary(self, consumer_key: str, resource_link_id: str,
                     approved: Optional[bool]) -> None:
        """Make this link a shadow of another consumer's resource link."""
        if not consumer_key or not resource_link_id:
            raise ValueError("A share binding needs both a consumer key and a resource link ID")
        self.primary_consumer_key = consumer_key
        self.primary_resource_link_id = resource_link_id
        self.share_approved = approved

    def set_setting(self, name: str, value=None) -> None:
        """Set a setting; a ``None`` or empty value removes it."""
        if value is None or value == '':
            self.settings.pop(name, None)
        else:
            self.settings[name] = value


@dataclass
class ConsumerNonce:
    consumer_key: str
    value: str
    expires: datetime


@dataclass
class ResourceLinkShareKey:
    """Token letting another resource link borrow a primary link's identity."""
    share_key_id: str
    primary_consumer_key: str
    primary_resource_link_id: str
    auto_approve: bool = False
    expires: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires is not None and self.expires <= now


@dataclass
class LaunchUser:
    """The launching end user, scoped to the resource link they came from."""
    consumer_key: str
    resource_link_id: str
    user_id: str
    context_id: Optional[str] = None
    firstname: str = ''
    lastname: str = ''
    fullname: str = ''
    email: str = ''
    roles: list = field(default_factory=list)
    lti_result_sourcedid: Optional[str] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None

    def get_id(self, id_scope: int = ID_SCOPE_ID_ONLY) -> str:
        """
        Return the user ID qualified according to the requested scope.

        GLOBAL prefixes the consumer key, CONTEXT adds the context ID and
        RESOURCE adds the resource link ID.
        """
        if id_scope == ID_SCOPE_GLOBAL:
            parts = [self.consumer_key, self.user_id]
        elif id_scope == ID_SCOPE_CONTEXT:
            parts = [self.consumer_key, self.context_id, self.user_id]
        elif id_scope == ID_SCOPE_RESOURCE:
            parts = [self.consumer_key, self.resource_link_id, self.user_id]
        else:
            return self.user_id
        return ID_SCOPE_SEPARATOR.join(part for part in parts if part)

    def has_role(self, role: str) -> bool:
        if not role.startswith('urn:'):
            role = ROLE_PREFIX + role
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return (self.has_role('Administrator')
                or self.has_role('urn:lti:sysrole:ims/lis/SysAdmin')
                or self.has_role('urn:lti:sysrole:ims/lis/Administrator')
                or self.has_role('urn:lti:instrole:ims/lis/Administrator'))

    @property
    def is_staff(self) -> bool:
        return (self.has_role('Instructor')
                or self.has_role('ContentDeveloper')
                or self.has_role('TeachingAssistant'))

    @property
    def is_learner(self) -> bool:
        return self.has_role('Learner')
