"""
What a launch hands back to the embedding application.

``LaunchResult`` is the authentication decision. The outcome classes are the
explicit instructions a handler returns (redirect, render, continue or
reject) so nothing has to guess what a returned string means.
"""
import warnings
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

from .entities import ID_SCOPE_ID_ONLY, LaunchUser, ResourceLink, ToolConsumer

CONNECTION_ERROR_MESSAGE = 'Sorry, there was an error connecting you to the application.'


@dataclass
class LaunchResult:
    ok: bool
    message: str = CONNECTION_ERROR_MESSAGE
    reason: Optional[str] = None
    reason_code: Optional[str] = None
    debug: bool = False
    reason_disclosable: bool = True
    consumer: Optional[ToolConsumer] = None
    resource_link: Optional[ResourceLink] = None
    user: Optional[LaunchUser] = None
    return_url: Optional[str] = None

    @property
    def public_reason(self) -> Optional[str]:
        """The internal reason, only when debugging is on."""
        return self.reason if self.debug else None

    def get_context(self) -> Optional[ResourceLink]:
        """Deprecated name for ``resource_link``."""
        warnings.warn('LaunchResult.get_context() is deprecated, use resource_link',
                      DeprecationWarning, stacklevel=2)
        return self.resource_link

    def as_session_data(self, id_scope: int = ID_SCOPE_ID_ONLY) -> dict:
        """
        Identifiers of a successful launch, safe to keep in a session.

        ``user_id`` is qualified according to ``id_scope`` (see LaunchUser.get_id).
        """
        if not self.ok:
            return {}
        return {
            'consumer_key': self.consumer.key,
            'resource_link_id': self.resource_link.resource_link_id,
            'resource_link_consumer_key': self.resource_link.consumer_key,
            'context_id': self.resource_link.context_id,
            'user_id': self.user.get_id(id_scope) if self.user else None,
            'roles': list(self.user.roles) if self.user else [],
            'return_url': self.return_url,
        }


# =============================================================================
# HANDLER OUTCOMES
# =============================================================================

@dataclass(frozen=True)
class Redirect:
    url: str


@dataclass(frozen=True)
class RenderOutput:
    content: str
    status: int = 200


@dataclass(frozen=True)
class Continue:
    pass


@dataclass(frozen=True)
class Reject:
    """Returned by a connect handler to turn an authenticated launch into a failure."""
    reason: Optional[str] = None


def error_outcome(result: LaunchResult):
    """
    Default outcome for a failed launch.

    With a return URL the user goes back to the consumer carrying
    ``lti_errormsg`` (and ``lti_errorlog`` when not debugging and the reason
    may be disclosed); otherwise an
    error message is rendered.
    """
    if result.return_url:
        if result.debug and result.reason:
            query = {'lti_errormsg': f"Debug error: {result.reason}"}
        else:
            query = {'lti_errormsg': result.message}
            if result.reason and result.reason_disclosable:
                query['lti_errorlog'] = f"Debug error: {result.reason}"
        separator = '&' if '?' in result.return_url else '?'
        return Redirect(f"{result.return_url}{separator}{urlencode(query)}")

    text = result.reason if result.debug and result.reason else result.message
    return RenderOutput(f"Error: {text}", status=400)
