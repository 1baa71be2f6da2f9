"""
Default launch handlers referenced by ``LTI_PROVIDER['HANDLERS']``.
"""
from .config import get_provider_config
from .results import Continue, Redirect


def connect(result):
    """Send an authenticated user on to the configured landing page."""
    landing_url = get_provider_config()['LANDING_URL']
    if landing_url:
        return Redirect(landing_url)
    return Continue()
