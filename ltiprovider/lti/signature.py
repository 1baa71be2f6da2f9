"""
OAuth 1.0a request signing for LTI launches.

This module provides:
- A registry of signature methods (HMAC-SHA1 is what LTI 1.1 requires)
- Verification of a signed launch against a consumer secret
- Timestamp freshness checks
- Consumer-side signing, used by tests and tooling to build valid launches
"""
import hmac
import logging
from datetime import datetime
from typing import Callable, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlparse

from oauthlib.oauth1 import Client
from oauthlib.oauth1.rfc5849 import signature

from .errors import SignatureInvalid

logger = logging.getLogger(__name__)

OAUTH_VERSION = '1.0'

# Maximum clock skew tolerated between consumer and provider (seconds)
DEFAULT_TIMESTAMP_THRESHOLD = 300


# =============================================================================
# SIGNATURE METHOD REGISTRY
# Each entry takes (signature base string, oauthlib Client) and returns the
# base64 signature. The client only supplies the consumer and token secrets.
# =============================================================================

SIGNATURE_METHODS = {
    'HMAC-SHA1': signature.sign_hmac_sha1_with_client,
    'HMAC-SHA256': signature.sign_hmac_sha256_with_client,
    'PLAINTEXT': signature.sign_plaintext_with_client,
}


def register_signature_method(name: str, func: Callable[[str, Client], str]) -> None:
    """Register (or replace) a signature method by its oauth_signature_method name."""
    SIGNATURE_METHODS[name] = func


def get_signature_method(name: str):
    """Get a signing function by name."""
    return SIGNATURE_METHODS.get(name)


# =============================================================================
# VERIFICATION
# =============================================================================

def build_base_string(method: str, url: str, params: Mapping[str, str]) -> str:
    """
    Build the OAuth signature base string for a request.

    Parameters from the URL query string are merged with ``params``; the
    ``oauth_signature`` parameter itself is always excluded.

    Args:
        method: HTTP method
        url: Full request URL (query string allowed)
        params: Body/form parameters of the request

    Returns:
        The canonical signature base string
    """
    collected = signature.collect_parameters(
        uri_query=urlparse(url).query,
        body=list(params.items()),
        exclude_oauth_signature=True,
    )
    normalized = signature.normalize_parameters(collected)
    return signature.signature_base_string(method.upper(), signature.base_string_uri(url), normalized)


def compute_signature(method_name: str, base_string: str,
                      consumer_secret: str, token_secret: str = '') -> str:
    func = get_signature_method(method_name)
    if func is None:
        supported = ', '.join(sorted(SIGNATURE_METHODS))
        raise SignatureInvalid(
            f'Signature method "{method_name}" not supported try one of the following: {supported}'
        )
    client = Client('', client_secret=consumer_secret or '',
                    resource_owner_secret=token_secret or '')
    return func(base_string, client)


def verify_request(method: str, url: str, params: Mapping[str, str],
                   consumer_secret: str, token_secret: str = '') -> None:
    """
    Check the signature of a launch request.

    Args:
        method: HTTP method of the launch
        url: Launch URL as received
        params: Launch parameters, including the oauth_* ones
        consumer_secret: Shared secret of the consumer
        token_secret: Token secret (always empty for LTI 1.1)

    Raises:
        SignatureInvalid: If the signature does not match, a protocol check
            fails, or anything goes wrong while computing the signature
    """
    try:
        version = params.get('oauth_version')
        if version and version != OAUTH_VERSION:
            raise SignatureInvalid(f"OAuth version '{version}' not supported")

        supplied = params.get('oauth_signature')
        if not supplied:
            raise SignatureInvalid('Missing signature parameter.')

        method_name = params.get('oauth_signature_method', '')
        base_string = build_base_string(method, url, params)
        expected = compute_signature(method_name, base_string, consumer_secret, token_secret)
    except SignatureInvalid:
        raise
    except Exception as e:
        logger.warning(f"Signature verification error: {e}")
        raise SignatureInvalid(str(e)) from e

    if not hmac.compare_digest(expected.encode('utf-8'), supplied.encode('utf-8')):
        logger.debug(f"Signature mismatch, base string was: {base_string}")
        raise SignatureInvalid('Invalid signature')


def check_timestamp(params: Mapping[str, str], now: datetime,
                    threshold: int = DEFAULT_TIMESTAMP_THRESHOLD) -> None:
    """
    Reject requests whose oauth_timestamp is too far from ``now``.

    Raises:
        SignatureInvalid: If the timestamp is missing, malformed or stale
    """
    raw = params.get('oauth_timestamp')
    if not raw:
        raise SignatureInvalid('Missing timestamp parameter. The parameter is required')
    try:
        timestamp = int(raw)
    except (TypeError, ValueError):
        raise SignatureInvalid(f"Invalid timestamp '{raw}'")

    ours = int(now.timestamp())
    if abs(ours - timestamp) > threshold:
        raise SignatureInvalid(f"Expired timestamp, yours {timestamp}, ours {ours}")


# =============================================================================
# CONSUMER-SIDE SIGNING
# =============================================================================

def sign_launch_params(params: Mapping[str, str], consumer_key: str, consumer_secret: str,
                       launch_url: str, signature_method: str = 'HMAC-SHA1',
                       nonce: Optional[str] = None,
                       timestamp: Optional[datetime] = None) -> dict:
    """
    Sign LTI launch parameters as a tool consumer would.

    Args:
        params: Dict of LTI parameters
        consumer_key: OAuth consumer key
        consumer_secret: OAuth consumer secret
        launch_url: Target URL for the LTI launch
        signature_method: OAuth signature method name
        nonce: Fixed nonce value (random if omitted)
        timestamp: Fixed signing time (current time if omitted)

    Returns:
        Dict of signed parameters (includes oauth_* params)
    """
    client_kwargs = {}
    if nonce is not None:
        client_kwargs['nonce'] = nonce
    if timestamp is not None:
        client_kwargs['timestamp'] = str(int(timestamp.timestamp()))

    client = Client(
        consumer_key,
        client_secret=consumer_secret,
        signature_method=signature_method,
        signature_type='BODY',
        **client_kwargs
    )

    _, _, signed_body = client.sign(
        launch_url,
        http_method='POST',
        body=urlencode(dict(params)),
        headers={'Content-Type': 'application/x-www-form-urlencoded'}
    )

    return dict(parse_qsl(signed_body, keep_blank_values=True))
