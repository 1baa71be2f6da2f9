"""
LTI launch errors.

Every failure the launch pipeline can report is a LaunchError subclass. The
authenticator catches them at the request boundary and turns them into a
failed LaunchResult; nothing here is meant to escape to the web server.
"""


class LaunchError(Exception):
    """Base class for recoverable launch failures."""

    reason_code = 'launch_error'
    default_reason = 'The launch request could not be authenticated.'
    # Reasons about the consumer's own trust policy stay internal unless debugging
    disclosable = True

    def __init__(self, reason: str = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class MalformedRequest(LaunchError):
    reason_code = 'malformed_request'
    default_reason = 'Missing or invalid required launch parameters.'


class UnknownConsumer(LaunchError):
    reason_code = 'unknown_consumer'
    default_reason = 'Invalid consumer key.'
    disclosable = False


class ConsumerPolicyViolation(LaunchError):
    reason_code = 'consumer_policy_violation'
    default_reason = 'Tool consumer is not available.'
    disclosable = False


class SignatureInvalid(LaunchError):
    reason_code = 'signature_invalid'
    default_reason = 'Invalid signature.'


class ReplayedNonce(LaunchError):
    reason_code = 'replayed_nonce'
    default_reason = 'Invalid nonce.'


class ConstraintViolation(LaunchError):
    reason_code = 'constraint_violation'

    def __init__(self, parameters):
        self.parameters = list(parameters)
        super().__init__(f"Invalid parameter(s): {', '.join(self.parameters)}.")


class SharingDisabled(LaunchError):
    reason_code = 'sharing_disabled'
    default_reason = 'Your sharing request has been refused because sharing is not being permitted.'


class SelfShareRequested(LaunchError):
    reason_code = 'self_share_requested'
    default_reason = 'It is not possible to share your resource link with yourself.'


class SharePendingApproval(LaunchError):
    reason_code = 'share_pending_approval'
    default_reason = 'Your share request is waiting to be approved.'


class ShareResolutionFailed(LaunchError):
    reason_code = 'share_resolution_failed'
    default_reason = 'Unable to load resource link being shared.'


class UnexpectedShare(ShareResolutionFailed):
    reason_code = 'unexpected_share'
    default_reason = ('You have not requested to share a resource link but an arrangement '
                      'is currently in place.')
