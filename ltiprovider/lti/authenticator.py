"""
LTI Launch Authenticator

Runs one basic launch request through the full trust pipeline:

1. Required launch parameters
2. Consumer lookup
3. OAuth signature and timestamp
4. Nonce (replay) check
5. Consumer policy (instance GUID, enabled, access window)
6. Configured parameter constraints
7. Resource link, user and consumer profile state
8. Shared resource link resolution
9. Persistence of the effective resource link

The first failing step decides the result; every failure is reported as a
LaunchResult rather than an exception.
"""
import logging
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Optional, Sequence

from .config import ParameterConstraint
from .consumers import ConsumerRegistry
from .data_store import DataStore, utcnow
from .errors import ConstraintViolation, LaunchError, ReplayedNonce, SignatureInvalid
from .nonce import NonceGuard
from .results import CONNECTION_ERROR_MESSAGE, LaunchResult
from .services import (
    is_debug_request,
    merge_consumer_profile,
    merge_resource_link,
    merge_user,
    validate_constraints,
    validate_launch_params,
)
from .sharing import ShareResolver
from .signature import DEFAULT_TIMESTAMP_THRESHOLD, check_timestamp, verify_request

logger = logging.getLogger(__name__)


class LaunchAuthenticator:
    """
    Authenticates basic LTI launch requests against a data store.

    Args:
        store: Data store holding consumers, resource links, nonces, share
            keys and users
        constraints: Parameter constraints checked on every launch
        allow_sharing: Permit shared resource link arrangements
        default_email: Email (or '@domain' suffix) for users without one
        timestamp_threshold: Tolerated oauth_timestamp skew in seconds
        debug: Always expose the detailed failure reason
        message: Replacement for the generic failure message
    """

    def __init__(self, store: DataStore, constraints: Sequence[ParameterConstraint] = (),
                 allow_sharing: bool = False, default_email: str = '',
                 timestamp_threshold: int = DEFAULT_TIMESTAMP_THRESHOLD,
                 debug: bool = False, message: Optional[str] = None):
        self.store = store
        self.consumers = ConsumerRegistry(store)
        self.nonces = NonceGuard(store)
        self.shares = ShareResolver(store, allow_sharing=allow_sharing)
        self.constraints = list(constraints)
        self.default_email = default_email
        self.timestamp_threshold = timestamp_threshold
        self.debug = debug
        self.message = message or CONNECTION_ERROR_MESSAGE

    def set_parameter_constraint(self, name: str, required: bool, max_length: Optional[int] = None) -> None:
        """Add (or replace) a constraint on a launch parameter."""
        name = name.strip()
        if not name:
            return
        self.constraints = [c for c in self.constraints if c.name != name]
        self.constraints.append(ParameterConstraint(name, required, max_length))

    def authenticate(self, params: Mapping[str, str], url: str, method: str = 'POST',
                     now: Optional[datetime] = None) -> LaunchResult:
        """
        Authenticate one launch.

        Args:
            params: Launch parameters as received (form fields)
            url: Launch URL the request was sent to
            method: HTTP method of the request
            now: Time of the request, defaults to the current time

        Returns:
            LaunchResult with the consumer, effective resource link and user
            on success, or the failure reason
        """
        params = MappingProxyType(dict(params))
        now = now or utcnow()
        result = LaunchResult(
            ok=False,
            message=self.message,
            debug=self.debug or is_debug_request(params),
            return_url=params.get('launch_presentation_return_url') or None,
        )

        try:
            consumer, resource_link, user = self._authenticate(params, url, method, now)
        except LaunchError as e:
            result.reason = e.reason
            result.reason_code = e.reason_code
            result.reason_disclosable = e.disclosable
            logger.warning(f"LTI launch rejected [{e.reason_code}]: {e.reason}")
            return result

        result.ok = True
        result.consumer = consumer
        result.resource_link = resource_link
        result.user = user
        logger.info(
            f"LTI launch accepted for consumer '{consumer.key}', "
            f"resource link '{resource_link.consumer_key}/{resource_link.resource_link_id}'"
        )
        return result

    def _authenticate(self, params, url, method, now):
        validate_launch_params(params)

        consumer = self.consumers.require(params['oauth_consumer_key'])

        verify_request(method, url, params, consumer.secret)
        check_timestamp(params, now, self.timestamp_threshold)

        nonce = params.get('oauth_nonce')
        if not nonce:
            raise SignatureInvalid('Missing nonce parameter. The parameter is required')
        if not self.nonces.check_and_record(consumer, nonce, now):
            raise ReplayedNonce()

        self.consumers.check_policy(consumer, params, now)

        invalid = validate_constraints(params, self.constraints)
        if invalid:
            raise ConstraintViolation(invalid)

        accessed_today = self.consumers.touch(consumer, now)
        consumer, profile_changed = merge_consumer_profile(consumer, params)
        if accessed_today or profile_changed:
            self.consumers.save(consumer)

        previous_link = self.store.find_resource_link(consumer.key, params['resource_link_id'].strip())
        resource_link = merge_resource_link(previous_link, consumer.key, params)

        previous_user = self.store.find_user(resource_link, params.get('user_id', '').strip())
        user, action = merge_user(previous_user, resource_link, params, self.default_email)
        if action == 'save':
            self.store.save_user(user)
        elif action == 'delete':
            self.store.delete_user(user)

        try:
            effective_link = self.shares.resolve(consumer, resource_link, params)
        except LaunchError:
            # Keep the requester's link (and any pending arrangement) visible
            self._save_resource_link(resource_link)
            raise

        self._save_resource_link(effective_link)
        return consumer, effective_link, user

    def _save_resource_link(self, resource_link):
        if not self.store.save_resource_link(resource_link):
            logger.warning(
                f"Unable to save resource link "
                f"'{resource_link.consumer_key}/{resource_link.resource_link_id}'"
            )
