"""
LTI Tool Provider

Wraps the authenticator with the handlers an application registers for each
kind of action. Handlers receive the LaunchResult and return an outcome
(Redirect, RenderOutput, Continue or Reject).
"""
import logging
from typing import Callable, Mapping, Optional, Union

from .authenticator import LaunchAuthenticator
from .config import build_constraints, get_data_store, get_provider_config, load_handlers
from .results import Continue, Redirect, Reject, RenderOutput, error_outcome

logger = logging.getLogger(__name__)

CONNECT = 'connect'
ERROR = 'error'

OUTCOME_TYPES = (Redirect, RenderOutput, Continue, Reject)


def normalize_handlers(handlers: Union[Callable, Mapping[str, Callable], None]) -> dict:
    """
    Build the action -> handler mapping.

    A single callable becomes the connect handler. A mapping without a
    connect entry uses its first handler for connect.
    """
    if handlers is None:
        return {}
    if callable(handlers):
        return {CONNECT: handlers}
    resolved = dict(handlers)
    if CONNECT not in resolved and resolved:
        resolved[CONNECT] = next(iter(resolved.values()))
    return resolved


class ToolProvider:
    """Authenticates launches and dispatches them to the registered handlers."""

    def __init__(self, handlers, authenticator: LaunchAuthenticator):
        self.handlers = normalize_handlers(handlers)
        self.authenticator = authenticator
        self.last_result = None

    @classmethod
    def from_settings(cls, store=None):
        """Build a provider from ``settings.LTI_PROVIDER``."""
        config = get_provider_config()
        authenticator = LaunchAuthenticator(
            store or get_data_store(),
            constraints=build_constraints(config['CONSTRAINTS']),
            allow_sharing=config['ALLOW_SHARING'],
            default_email=config['DEFAULT_EMAIL'],
            timestamp_threshold=config['TIMESTAMP_THRESHOLD'],
            debug=config['DEBUG'],
            message=config['MESSAGE'],
        )
        return cls(load_handlers(config['HANDLERS']), authenticator)

    def set_parameter_constraint(self, name: str, required: bool, max_length: Optional[int] = None) -> None:
        self.authenticator.set_parameter_constraint(name, required, max_length)

    def handle(self, params: Mapping[str, str], url: str, method: str = 'POST', now=None):
        """
        Process a launch request.

        Returns:
            The outcome to act on: Redirect, RenderOutput or Continue
        """
        result = self.authenticator.authenticate(params, url, method=method, now=now)
        self.last_result = result

        if result.ok:
            outcome = self._call(CONNECT, result)
            if isinstance(outcome, Reject):
                result.ok = False
                result.reason = outcome.reason or result.reason
                result.reason_code = 'rejected_by_handler'
                logger.info(f"Launch rejected by connect handler: {result.reason}")
            else:
                return outcome

        outcome = self._call(ERROR, result, default=None)
        if isinstance(outcome, (Redirect, RenderOutput, Continue)):
            return outcome
        return error_outcome(result)

    def _call(self, kind, result, default=Continue()):
        handler = self.handlers.get(kind)
        if handler is None:
            return default
        outcome = handler(result)
        if outcome is None:
            return default
        if not isinstance(outcome, OUTCOME_TYPES):
            raise TypeError(f"{kind} handler returned {type(outcome).__name__}, expected a launch outcome")
        return outcome
