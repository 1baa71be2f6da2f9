"""
LTI Tool Provider Configuration

All provider behaviour that a deployment may want to change is read from the
``LTI_PROVIDER`` dictionary in Django settings, with a handful of values that
can be overridden from the environment:

- LTI_ALLOW_SHARING: permit shared resource link arrangements
- LTI_DEBUG: return the detailed failure reason to the consumer
- LTI_DEFAULT_EMAIL: email (or '@domain' suffix) for users launched without one
- LTI_TIMESTAMP_THRESHOLD: tolerated oauth_timestamp skew in seconds
"""
import os
import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)


DEFAULT_PROVIDER_CONFIG = {
    'ALLOW_SHARING': False,
    'DEBUG': False,
    'DEFAULT_EMAIL': '',
    'ID_SCOPE': 0,
    'TIMESTAMP_THRESHOLD': 300,
    # parameter name -> {'required': bool, 'max_length': int | None}
    'CONSTRAINTS': {},
    # action kind ('connect', 'error') -> dotted path of the handler
    'HANDLERS': {
        'connect': 'lti.handlers.connect',
    },
    'DATA_STORE': 'lti.storage.DjangoDataStore',
    'LANDING_URL': '',
    'MESSAGE': None,
}


@dataclass(frozen=True)
class ParameterConstraint:
    """A launch parameter that must be present and/or short enough."""
    name: str
    required: bool
    max_length: Optional[int] = None


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def get_provider_config() -> dict:
    """
    Get the provider configuration: defaults, then settings, then environment.

    Returns:
        A new dict; callers may modify it freely
    """
    config = dict(DEFAULT_PROVIDER_CONFIG)
    config.update(getattr(settings, 'LTI_PROVIDER', {}))

    config['ALLOW_SHARING'] = _env_flag('LTI_ALLOW_SHARING', config['ALLOW_SHARING'])
    config['DEBUG'] = _env_flag('LTI_DEBUG', config['DEBUG'])
    config['DEFAULT_EMAIL'] = os.getenv('LTI_DEFAULT_EMAIL', config['DEFAULT_EMAIL'])

    threshold = os.getenv('LTI_TIMESTAMP_THRESHOLD')
    if threshold:
        try:
            config['TIMESTAMP_THRESHOLD'] = int(threshold)
        except ValueError:
            logger.warning(f"Ignoring invalid LTI_TIMESTAMP_THRESHOLD '{threshold}'")

    return config


def build_constraints(definitions: dict) -> list:
    """
    Turn the CONSTRAINTS setting into ParameterConstraint objects.

    Args:
        definitions: Mapping of parameter name to {'required', 'max_length'}

    Returns:
        List of ParameterConstraint, blank names skipped
    """
    constraints = []
    for name, rule in definitions.items():
        name = name.strip()
        if not name:
            continue
        constraints.append(ParameterConstraint(
            name=name,
            required=bool(rule.get('required', False)),
            max_length=rule.get('max_length'),
        ))
    return constraints


def load_handlers(paths: dict) -> dict:
    """Resolve the HANDLERS setting (dotted paths) into callables."""
    return {kind: import_string(path) if isinstance(path, str) else path
            for kind, path in paths.items()}


def get_data_store():
    """Instantiate the configured data store."""
    store_class = import_string(get_provider_config()['DATA_STORE'])
    return store_class()
