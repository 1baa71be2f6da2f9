"""
LTI Launch State

Pure functions that turn (previous state, launch parameters) into new state:
- Validating required launch parameters and configured constraints
- Parsing roles
- Deriving resource link titles and settings
- Building the launching user
- Updating the consumer profile

Nothing here touches the data store; callers decide what to persist.
"""
import copy
import logging
from dataclasses import replace
from typing import Mapping, Optional, Sequence

from .config import ParameterConstraint
from .entities import ROLE_PREFIX, LaunchUser, ResourceLink, ToolConsumer
from .errors import MalformedRequest

logger = logging.getLogger(__name__)

LTI_MESSAGE_TYPE = 'basic-lti-launch-request'
LTI_VERSION = 'LTI-1p0'

CUSTOM_PREFIX = 'custom_'

# LTI parameters retained in the resource link settings, cleared when absent
LTI_SETTINGS_NAMES = (
    'ext_resource_link_content',
    'ext_resource_link_content_signature',
    'lis_result_sourcedid',
    'lis_outcome_service_url',
    'ext_ims_lis_basic_outcome_url',
    'ext_ims_lis_resultvalue_sourcedids',
    'ext_ims_lis_memberships_id',
    'ext_ims_lis_memberships_url',
    'ext_ims_lti_tool_setting',
    'ext_ims_lti_tool_setting_id',
    'ext_ims_lti_tool_setting_url',
)


# =============================================================================
# VALIDATION
# =============================================================================

def validate_launch_params(params: Mapping[str, str]) -> None:
    """
    Check the parameters every basic launch must carry.

    Raises:
        MalformedRequest: If any of them is missing or has the wrong value
    """
    if not params.get('oauth_consumer_key'):
        raise MalformedRequest('Missing oauth_consumer_key parameter.')
    if params.get('lti_message_type') != LTI_MESSAGE_TYPE:
        raise MalformedRequest(f"Unsupported lti_message_type '{params.get('lti_message_type', '')}'.")
    if params.get('lti_version') != LTI_VERSION:
        raise MalformedRequest(f"Unsupported lti_version '{params.get('lti_version', '')}'.")
    if not params.get('resource_link_id', '').strip():
        raise MalformedRequest('Missing resource_link_id parameter.')


def validate_constraints(params: Mapping[str, str],
                         constraints: Sequence[ParameterConstraint]) -> list:
    """
    Check launch parameters against the configured constraints.

    Args:
        params: Launch parameters
        constraints: Rules to apply

    Returns:
        Names of every parameter that broke its rule, in constraint order
    """
    invalid = []
    for constraint in constraints:
        value = params.get(constraint.name)
        present = value is not None and len(value.strip()) > 0
        if constraint.required and not present:
            invalid.append(constraint.name)
            continue
        if constraint.max_length is not None and value is not None:
            if len(value.strip()) > constraint.max_length:
                invalid.append(constraint.name)
    return invalid


def is_debug_request(params: Mapping[str, str]) -> bool:
    return params.get('custom_debug', '').lower() == 'true'


# =============================================================================
# ROLES AND TITLES
# =============================================================================

def parse_roles(roles_string: str) -> list:
    """
    Get a list of fully qualified roles from a comma-separated string.

    Bare role names such as 'Instructor' are prefixed with
    'urn:lti:role:ims/lis/'; anything already starting with 'urn:' is kept.
    """
    roles = []
    for role in roles_string.split(','):
        role = role.strip()
        if not role:
            continue
        if not role.startswith('urn:'):
            role = ROLE_PREFIX + role
        roles.append(role)
    return roles


def derive_title(params: Mapping[str, str], resource_link_id: str) -> str:
    """Title shown for a resource link: 'context: link', either part, or 'Course <id>'."""
    title = params.get('context_title', '').strip()
    link_title = params.get('resource_link_title', '').strip()
    if link_title:
        if title:
            title += ': '
        title += link_title
    if not title:
        title = f"Course {resource_link_id}"
    return title


# =============================================================================
# STATE MERGES
# =============================================================================

def merge_resource_link(previous: Optional[ResourceLink], consumer_key: str,
                        params: Mapping[str, str]) -> ResourceLink:
    """
    Build the resource link state for this launch.

    Sharing fields and settings not derived from the launch are kept from
    ``previous``. Passthrough LTI settings are copied or cleared, and custom
    settings are replaced by the ones in ``params``.
    """
    resource_link_id = params['resource_link_id'].strip()
    if previous is None:
        link = ResourceLink(consumer_key=consumer_key, resource_link_id=resource_link_id)
    else:
        link = replace(previous, settings=copy.deepcopy(previous.settings))

    if 'context_id' in params:
        link.context_id = params['context_id'].strip()
    link.title = derive_title(params, resource_link_id)

    for name in LTI_SETTINGS_NAMES:
        link.set_setting(name, params.get(name))

    for name in [n for n in link.settings if n.startswith(CUSTOM_PREFIX)]:
        link.set_setting(name)
    for name, value in params.items():
        if name.startswith(CUSTOM_PREFIX):
            link.set_setting(name, value)

    return link


def merge_user(previous: Optional[LaunchUser], resource_link: ResourceLink,
               params: Mapping[str, str], default_email: str = '') -> tuple:
    """
    Build the launching user and decide what to do with the stored record.

    Returns:
        Tuple of (LaunchUser, action) where action is 'save' when the result
        sourcedid changed, 'delete' when it was withdrawn, otherwise None
    """
    user_id = params.get('user_id', '').strip()
    user = LaunchUser(
        consumer_key=resource_link.consumer_key,
        resource_link_id=resource_link.resource_link_id,
        user_id=user_id,
        context_id=resource_link.context_id,
    )
    if previous is not None:
        user.lti_result_sourcedid = previous.lti_result_sourcedid
        user.created = previous.created
        user.updated = previous.updated

    firstname = params.get('lis_person_name_given', '')
    lastname = params.get('lis_person_name_family', '')
    fullname = params.get('lis_person_name_full', '')
    user.firstname = firstname
    user.lastname = lastname
    if fullname:
        user.fullname = fullname
    elif firstname or lastname:
        user.fullname = f"{firstname} {lastname}".strip()

    email = params.get('lis_person_contact_email_primary', '')
    if email:
        user.email = email
    elif default_email:
        user.email = f"{user_id}{default_email}" if default_email.startswith('@') else default_email

    if 'roles' in params:
        user.roles = parse_roles(params['roles'])

    action = None
    sourcedid = params.get('lis_result_sourcedid')
    if sourcedid is not None:
        if user.lti_result_sourcedid != sourcedid:
            user.lti_result_sourcedid = sourcedid
            action = 'save'
    elif user.lti_result_sourcedid:
        action = 'delete'

    return user, action


def merge_consumer_profile(consumer: ToolConsumer, params: Mapping[str, str]) -> tuple:
    """
    Apply the consumer details sent with a launch.

    Returns:
        Tuple of (ToolConsumer, changed) where changed is True if any stored
        field differs from before
    """
    updated = replace(consumer)
    changed = False

    if updated.lti_version != params.get('lti_version'):
        updated.lti_version = params.get('lti_version')
        changed = True

    name = params.get('tool_consumer_instance_name')
    if name is not None and updated.consumer_name != name:
        updated.consumer_name = name
        changed = True

    family = params.get('tool_consumer_info_product_family_code')
    if family is not None:
        version = family
        if 'tool_consumer_info_version' in params:
            version += f"-{params['tool_consumer_info_version']}"
        if updated.consumer_version != version:
            updated.consumer_version = version
            changed = True
    elif 'ext_lms' in params and updated.consumer_version != params['ext_lms']:
        updated.consumer_version = params['ext_lms']
        changed = True

    guid = params.get('tool_consumer_instance_guid')
    if guid is not None:
        if updated.consumer_guid is None:
            updated.consumer_guid = guid
            changed = True
        elif not updated.protected and updated.consumer_guid != guid:
            updated.consumer_guid = guid
            changed = True

    css = params.get('launch_presentation_css_url')
    if css is None:
        css = params.get('ext_launch_presentation_css_url')
    if css is not None:
        if updated.css_path != css:
            updated.css_path = css
            changed = True
    elif updated.css_path:
        updated.css_path = None
        changed = True

    return updated, changed
