"""
Tests for LTI Tool Provider launch authentication.

Run with:
    python manage.py test lti
"""
import base64
import os
from datetime import date, datetime, timedelta, timezone
from io import StringIO
from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

from django.contrib import admin
from django.core.cache import cache
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from oauthlib.oauth1.rfc5849 import signature as oauth_signature

from lti import handlers
from lti.authenticator import LaunchAuthenticator
from lti.cache_data_storage import CacheDataStorage
from lti.config import build_constraints, get_provider_config, load_handlers
from lti.data_store import MemoryDataStore, utcnow
from lti.entities import (
    ID_SCOPE_CONTEXT,
    ID_SCOPE_GLOBAL,
    ID_SCOPE_ID_ONLY,
    ID_SCOPE_RESOURCE,
    ConsumerNonce,
    LaunchUser,
    ResourceLink,
    ResourceLinkShareKey,
    ToolConsumer,
)
from lti.errors import ConstraintViolation, SignatureInvalid
from lti.models import LTIConsumer, LTIConsumerNonce, LTIResourceLink, LTIShareKey, LTIUser
from lti.nonce import MAX_NONCE_LENGTH, NonceGuard, canonicalize_nonce
from lti.provider import CONNECT, ERROR, ToolProvider, normalize_handlers
from lti.results import Continue, LaunchResult, Redirect, Reject, RenderOutput, error_outcome
from lti.services import (
    derive_title,
    merge_consumer_profile,
    merge_resource_link,
    parse_roles,
    validate_constraints,
)
from lti.sharing import ShareResolver
from lti.signature import (
    SIGNATURE_METHODS,
    build_base_string,
    check_timestamp,
    register_signature_method,
    sign_launch_params,
    verify_request,
)
from lti.storage import DjangoDataStore

LAUNCH_URL = 'https://tool.example.com/lti/launch/'
NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def launch_params(**overrides):
    """Unsigned basic launch parameters; a None override removes the parameter."""
    params = {
        'lti_message_type': 'basic-lti-launch-request',
        'lti_version': 'LTI-1p0',
        'resource_link_id': 'link1',
        'resource_link_title': 'Week 1',
        'context_id': 'ctx1',
        'context_title': 'Algebra',
        'user_id': 'user1',
        'roles': 'Instructor',
    }
    params.update(overrides)
    return {name: value for name, value in params.items() if value is not None}


def signed(params, key='key1', secret='secret1', now=NOW, nonce=None, url=LAUNCH_URL,
           method='HMAC-SHA1'):
    return sign_launch_params(params, key, secret, url, signature_method=method,
                              nonce=nonce, timestamp=now)


def make_store(*consumers):
    store = MemoryDataStore()
    for consumer in consumers or (ToolConsumer(key='key1', secret='secret1', enabled=True),):
        store.save_consumer(consumer)
    return store


# ==============================================================================
# Signatures
# ==============================================================================

class SignatureTestCase(SimpleTestCase):
    """Tests for OAuth signature verification."""

    def test_signed_launch_verifies(self):
        """Test a launch signed with oauthlib verifies against the same secret."""
        params = signed(launch_params())

        self.assertEqual(params['oauth_consumer_key'], 'key1')
        self.assertEqual(params['oauth_signature_method'], 'HMAC-SHA1')
        verify_request('POST', LAUNCH_URL, params, 'secret1')

    def test_tampered_parameter_rejected(self):
        """Test changing any signed parameter invalidates the signature."""
        params = signed(launch_params())
        params['user_id'] = 'someone-else'

        with self.assertRaises(SignatureInvalid):
            verify_request('POST', LAUNCH_URL, params, 'secret1')

    def test_wrong_secret_rejected(self):
        params = signed(launch_params())
        with self.assertRaises(SignatureInvalid):
            verify_request('POST', LAUNCH_URL, params, 'not-the-secret')

    def test_other_signature_methods(self):
        """Test HMAC-SHA256 and PLAINTEXT signatures are accepted."""
        for method in ('HMAC-SHA256', 'PLAINTEXT'):
            with self.subTest(method=method):
                params = signed(launch_params(), method=method)
                verify_request('POST', LAUNCH_URL, params, 'secret1')

    def test_query_string_is_signed(self):
        """Test parameters in the launch URL query take part in the signature."""
        url = LAUNCH_URL + '?course=42'
        params = signed(launch_params(), url=url)

        verify_request('POST', url, params, 'secret1')
        with self.assertRaises(SignatureInvalid):
            verify_request('POST', LAUNCH_URL + '?course=43', params, 'secret1')

    def test_registered_signature_method(self):
        """Test a signature method registered at runtime is used for verification."""
        name = 'HMAC-SHA1-REVERSED'
        register_signature_method(
            name, lambda base_string, client: oauth_signature.sign_hmac_sha1_with_client(base_string, client)[::-1]
        )
        self.addCleanup(SIGNATURE_METHODS.pop, name, None)

        params = launch_params(
            oauth_consumer_key='key1',
            oauth_nonce='registered-method',
            oauth_timestamp=str(int(NOW.timestamp())),
            oauth_version='1.0',
            oauth_signature_method=name,
        )
        base_string = build_base_string('POST', LAUNCH_URL, params)
        params['oauth_signature'] = oauth_signature.sign_hmac_sha1(base_string, 'secret1', '')[::-1]

        verify_request('POST', LAUNCH_URL, params, 'secret1')
        with self.assertRaises(SignatureInvalid):
            verify_request('POST', LAUNCH_URL, params, 'other-secret')

    def test_unsupported_method(self):
        params = signed(launch_params())
        params['oauth_signature_method'] = 'RSA-MD5'

        with self.assertRaises(SignatureInvalid) as cm:
            verify_request('POST', LAUNCH_URL, params, 'secret1')
        self.assertIn('not supported', cm.exception.reason)

    def test_missing_signature(self):
        params = signed(launch_params())
        del params['oauth_signature']

        with self.assertRaises(SignatureInvalid):
            verify_request('POST', LAUNCH_URL, params, 'secret1')

    def test_unsupported_oauth_version(self):
        params = signed(launch_params())
        params['oauth_version'] = '2.0'

        with self.assertRaises(SignatureInvalid) as cm:
            verify_request('POST', LAUNCH_URL, params, 'secret1')
        self.assertIn('2.0', cm.exception.reason)

    def test_timestamp_within_threshold(self):
        params = {'oauth_timestamp': str(int(NOW.timestamp()) - 299)}
        check_timestamp(params, NOW, threshold=300)

    def test_stale_timestamp(self):
        """Test a timestamp outside the threshold names both clocks."""
        stamp = int(NOW.timestamp()) - 301
        with self.assertRaises(SignatureInvalid) as cm:
            check_timestamp({'oauth_timestamp': str(stamp)}, NOW, threshold=300)
        self.assertEqual(
            cm.exception.reason,
            f"Expired timestamp, yours {stamp}, ours {int(NOW.timestamp())}",
        )

    def test_missing_timestamp(self):
        with self.assertRaises(SignatureInvalid):
            check_timestamp({}, NOW)


# ==============================================================================
# Nonces
# ==============================================================================

class NonceTestCase(SimpleTestCase):
    """Tests for nonce canonicalization and replay detection."""

    def test_short_nonce_unchanged(self):
        self.assertEqual(canonicalize_nonce('abc123'), 'abc123')

    def test_long_nonce_truncated(self):
        value = 'x' * 40 + '!'
        self.assertEqual(canonicalize_nonce(value), 'x' * MAX_NONCE_LENGTH)

    def test_long_base64_nonce_decoded(self):
        """Test a long base64 nonce of printable text is decoded before truncating."""
        text = 'abcdefghijklmnopqrstuvwxyz0123456789'
        encoded = base64.b64encode(text.encode('ascii')).decode('ascii')

        self.assertEqual(canonicalize_nonce(encoded), text[:MAX_NONCE_LENGTH])

    def test_unpadded_base64_nonce_decoded(self):
        text = 'abcdefghijklmnopqrstuvwxyz0123456789A'
        encoded = base64.b64encode(text.encode('ascii')).decode('ascii').rstrip('=')
        self.assertEqual(len(encoded), 50)

        self.assertEqual(canonicalize_nonce(encoded), text[:MAX_NONCE_LENGTH])

    def test_long_base64_binary_nonce_kept_encoded(self):
        encoded = base64.b64encode(bytes(range(30))).decode('ascii')
        self.assertGreater(len(encoded), MAX_NONCE_LENGTH)

        self.assertEqual(canonicalize_nonce(encoded), encoded[:MAX_NONCE_LENGTH])

    def test_replay_rejected(self):
        store = make_store()
        consumer = store.find_consumer('key1')
        guard = NonceGuard(store)

        self.assertTrue(guard.check_and_record(consumer, 'nonce-1', NOW))
        self.assertFalse(guard.check_and_record(consumer, 'nonce-1', NOW + timedelta(minutes=29)))

    def test_expired_nonce_accepted_again(self):
        """Test a nonce is forgotten once its record expires."""
        store = make_store()
        consumer = store.find_consumer('key1')
        guard = NonceGuard(store)

        self.assertTrue(guard.check_and_record(consumer, 'nonce-1', NOW))
        self.assertTrue(guard.check_and_record(consumer, 'nonce-1', NOW + timedelta(minutes=31)))

    def test_nonces_scoped_per_consumer(self):
        store = make_store(ToolConsumer(key='key1', enabled=True), ToolConsumer(key='key2', enabled=True))
        guard = NonceGuard(store)

        self.assertTrue(guard.check_and_record(store.find_consumer('key1'), 'shared', NOW))
        self.assertTrue(guard.check_and_record(store.find_consumer('key2'), 'shared', NOW))

    def test_long_nonces_collide_after_canonicalization(self):
        store = make_store()
        consumer = store.find_consumer('key1')
        guard = NonceGuard(store)
        prefix = 'p' * MAX_NONCE_LENGTH

        self.assertTrue(guard.check_and_record(consumer, prefix + '-first!', NOW))
        self.assertFalse(guard.check_and_record(consumer, prefix + '-second!', NOW))

    def test_memory_store_purges_expired(self):
        store = make_store()
        store.save_nonce(ConsumerNonce('key1', 'old', NOW - timedelta(minutes=1)), NOW)
        store.save_nonce(ConsumerNonce('key1', 'new', NOW + timedelta(minutes=10)), NOW)

        self.assertEqual(store.purge_expired_nonces(NOW), 1)
        self.assertIsNone(store.find_nonce('key1', 'old'))
        self.assertIsNotNone(store.find_nonce('key1', 'new'))


# ==============================================================================
# Launch state
# ==============================================================================

class LaunchStateTestCase(SimpleTestCase):
    """Tests for the pure state helpers in lti.services."""

    def test_derive_title(self):
        """Test titles combine the context and resource link titles."""
        self.assertEqual(derive_title({'context_title': 'Algebra', 'resource_link_title': 'Week 1'}, 'l1'),
                         'Algebra: Week 1')
        self.assertEqual(derive_title({'context_title': ' Algebra '}, 'l1'), 'Algebra')
        self.assertEqual(derive_title({'resource_link_title': 'Week 1'}, 'l1'), 'Week 1')
        self.assertEqual(derive_title({'context_title': '  '}, 'l1'), 'Course l1')

    def test_parse_roles(self):
        roles = parse_roles('Instructor, urn:lti:instrole:ims/lis/Administrator,,Learner')
        self.assertEqual(roles, [
            'urn:lti:role:ims/lis/Instructor',
            'urn:lti:instrole:ims/lis/Administrator',
            'urn:lti:role:ims/lis/Learner',
        ])

    def test_user_role_helpers(self):
        user = LaunchUser('key1', 'link1', 'user1', roles=parse_roles('TeachingAssistant'))
        self.assertTrue(user.is_staff)
        self.assertFalse(user.is_learner)
        self.assertFalse(user.is_admin)

    def test_user_id_scopes(self):
        user = LaunchUser('key1', 'link1', 'user1', context_id='ctx1')
        self.assertEqual(user.get_id(ID_SCOPE_ID_ONLY), 'user1')
        self.assertEqual(user.get_id(ID_SCOPE_GLOBAL), 'key1:user1')
        self.assertEqual(user.get_id(ID_SCOPE_CONTEXT), 'key1:ctx1:user1')
        self.assertEqual(user.get_id(ID_SCOPE_RESOURCE), 'key1:link1:user1')

    def test_resource_link_primary_pair(self):
        """Test the primary consumer key and link ID are only valid together."""
        with self.assertRaises(ValueError):
            ResourceLink('key1', 'link1', primary_consumer_key='key2')

    def test_merge_resource_link_replaces_custom_settings(self):
        previous = ResourceLink('key1', 'link1', settings={
            'custom_old': '1',
            'lis_outcome_service_url': 'https://lms.example.com/outcomes',
            'local_flag': 'kept',
        })
        link = merge_resource_link(previous, 'key1', launch_params(custom_new='2'))

        self.assertEqual(link.settings, {'custom_new': '2', 'local_flag': 'kept'})
        # previous record is left untouched
        self.assertIn('custom_old', previous.settings)

    def test_validate_constraints_reports_all(self):
        constraints = build_constraints({
            'user_id': {'required': True, 'max_length': 5},
            'lis_person_name_given': {'required': True},
            'context_id': {'required': False, 'max_length': 3},
            ' ': {'required': True},
        })

        invalid = validate_constraints(launch_params(user_id='user123'), constraints)
        self.assertEqual(invalid, ['user_id', 'lis_person_name_given', 'context_id'])

    def test_constraint_violation_message(self):
        error = ConstraintViolation(['user_id', 'roles'])
        self.assertEqual(error.reason, 'Invalid parameter(s): user_id, roles.')

    def test_consumer_profile_from_product_family(self):
        consumer = ToolConsumer(key='key1')
        updated, changed = merge_consumer_profile(consumer, {
            'lti_version': 'LTI-1p0',
            'tool_consumer_info_product_family_code': 'moodle',
            'tool_consumer_info_version': '4.1',
            'tool_consumer_instance_name': 'Example University',
        })

        self.assertTrue(changed)
        self.assertEqual(updated.consumer_version, 'moodle-4.1')
        self.assertEqual(updated.consumer_name, 'Example University')
        self.assertIsNone(consumer.consumer_version)

    def test_consumer_profile_ext_lms(self):
        consumer = ToolConsumer(key='key1', lti_version='LTI-1p0', consumer_version='canvas')
        updated, changed = merge_consumer_profile(consumer, {'lti_version': 'LTI-1p0', 'ext_lms': 'canvas'})
        self.assertFalse(changed)

        updated, changed = merge_consumer_profile(consumer, {'lti_version': 'LTI-1p0', 'ext_lms': 'sakai'})
        self.assertTrue(changed)
        self.assertEqual(updated.consumer_version, 'sakai')

    def test_consumer_profile_keeps_protected_guid(self):
        consumer = ToolConsumer(key='key1', lti_version='LTI-1p0', consumer_guid='guid-a', protected=True)
        updated, changed = merge_consumer_profile(consumer, {'lti_version': 'LTI-1p0',
                                                             'tool_consumer_instance_guid': 'guid-b'})
        self.assertFalse(changed)
        self.assertEqual(updated.consumer_guid, 'guid-a')

    def test_consumer_profile_clears_css(self):
        consumer = ToolConsumer(key='key1', lti_version='LTI-1p0', css_path='https://lms.example.com/a.css')
        updated, changed = merge_consumer_profile(consumer, {'lti_version': 'LTI-1p0'})
        self.assertTrue(changed)
        self.assertIsNone(updated.css_path)


# ==============================================================================
# Authentication pipeline
# ==============================================================================

class LaunchAuthenticatorTestCase(SimpleTestCase):
    """Tests for LaunchAuthenticator against the in-memory store."""

    def setUp(self):
        self.store = make_store()
        self.authenticator = LaunchAuthenticator(self.store)

    def authenticate(self, params, now=NOW):
        return self.authenticator.authenticate(params, LAUNCH_URL, now=now)

    def test_successful_launch(self):
        """Test a valid launch returns the consumer, resource link and user."""
        result = self.authenticate(signed(launch_params()))

        self.assertTrue(result.ok, result.reason)
        self.assertEqual(result.consumer.key, 'key1')
        self.assertEqual(result.resource_link.title, 'Algebra: Week 1')
        self.assertEqual(result.resource_link.context_id, 'ctx1')
        self.assertEqual(result.user.user_id, 'user1')
        self.assertTrue(result.user.is_staff)
        self.assertIsNotNone(self.store.find_resource_link('key1', 'link1'))

    def test_consumer_last_access_and_profile_saved(self):
        self.authenticate(signed(launch_params(tool_consumer_info_product_family_code='canvas')))

        consumer = self.store.find_consumer('key1')
        self.assertEqual(consumer.last_access, date(2024, 5, 1))
        self.assertEqual(consumer.consumer_version, 'canvas')
        self.assertEqual(consumer.lti_version, 'LTI-1p0')

    def test_replayed_launch_rejected(self):
        params = signed(launch_params())

        self.assertTrue(self.authenticate(params).ok)
        result = self.authenticate(params, now=NOW + timedelta(seconds=10))
        self.assertFalse(result.ok)
        self.assertEqual(result.reason_code, 'replayed_nonce')

    def test_nonce_reusable_after_expiry(self):
        """Test the same nonce is accepted once its 30 minute record has expired."""
        later = NOW + timedelta(minutes=31)

        self.assertTrue(self.authenticate(signed(launch_params(), nonce='fixed-nonce')).ok)
        result = self.authenticate(signed(launch_params(), nonce='fixed-nonce', now=later), now=later)
        self.assertTrue(result.ok, result.reason)

    def test_tampered_launch_rejected(self):
        params = signed(launch_params())
        params['roles'] = 'Administrator'

        result = self.authenticate(params)
        self.assertFalse(result.ok)
        self.assertEqual(result.reason_code, 'signature_invalid')
        self.assertIsNone(self.store.find_resource_link('key1', 'link1'))

    def test_stale_timestamp_rejected(self):
        result = self.authenticate(signed(launch_params()), now=NOW + timedelta(minutes=10))
        self.assertFalse(result.ok)
        self.assertTrue(result.reason.startswith('Expired timestamp'))

    def test_unknown_consumer(self):
        result = self.authenticate(signed(launch_params(), key='nobody'))
        self.assertEqual(result.reason_code, 'unknown_consumer')
        self.assertEqual(result.reason, 'Invalid consumer key.')

    def test_malformed_request(self):
        result = self.authenticate(signed(launch_params(lti_version='LTI-2p0')))
        self.assertEqual(result.reason_code, 'malformed_request')

        result = self.authenticate(signed(launch_params(resource_link_id=None)))
        self.assertEqual(result.reason_code, 'malformed_request')

    def test_protected_consumer_guid(self):
        """Test a protected consumer only accepts its bound instance GUID."""
        self.store.save_consumer(ToolConsumer(key='key1', secret='secret1', enabled=True,
                                              protected=True, consumer_guid='guid-a'))

        result = self.authenticate(signed(launch_params(tool_consumer_instance_guid='guid-b')))
        self.assertEqual(result.reason_code, 'consumer_policy_violation')
        self.assertEqual(result.reason, 'Request is from an invalid tool consumer.')

        result = self.authenticate(signed(launch_params()))
        self.assertEqual(result.reason, 'Request is from an invalid tool consumer.')

        result = self.authenticate(signed(launch_params(tool_consumer_instance_guid='guid-a')))
        self.assertTrue(result.ok, result.reason)
        self.assertEqual(self.store.find_consumer('key1').consumer_guid, 'guid-a')

    def test_protected_consumer_without_guid(self):
        self.store.save_consumer(ToolConsumer(key='key1', secret='secret1', enabled=True, protected=True))

        result = self.authenticate(signed(launch_params()))
        self.assertEqual(result.reason, 'A tool consumer GUID must be included in the launch request.')

        result = self.authenticate(signed(launch_params(tool_consumer_instance_guid='guid-a')))
        self.assertTrue(result.ok, result.reason)
        self.assertEqual(self.store.find_consumer('key1').consumer_guid, 'guid-a')

    def test_consumer_availability(self):
        cases = [
            (dict(enabled=False), 'Tool consumer has not been enabled by the tool provider.'),
            (dict(enabled=True, enable_from=NOW + timedelta(days=1)), 'Tool consumer access is not yet available.'),
            (dict(enabled=True, enable_until=NOW), 'Tool consumer access has expired.'),
        ]
        for fields, reason in cases:
            with self.subTest(reason=reason):
                self.store.save_consumer(ToolConsumer(key='key1', secret='secret1', **fields))
                result = self.authenticate(signed(launch_params()))
                self.assertFalse(result.ok)
                self.assertEqual(result.reason, reason)

    def test_signature_checked_before_policy(self):
        self.store.save_consumer(ToolConsumer(key='key1', secret='secret1', enabled=False))

        result = self.authenticate(signed(launch_params(), secret='wrong'))
        self.assertEqual(result.reason_code, 'signature_invalid')

    def test_constraints_report_every_violation(self):
        """Test all broken constraints are listed and nothing is saved."""
        self.authenticator.set_parameter_constraint('user_id', True, 5)
        self.authenticator.set_parameter_constraint('lis_person_name_given', True)
        self.authenticator.set_parameter_constraint('context_id', False, 3)

        result = self.authenticate(signed(launch_params(user_id='user123456')))

        self.assertFalse(result.ok)
        self.assertEqual(result.reason_code, 'constraint_violation')
        self.assertEqual(result.reason, 'Invalid parameter(s): user_id, lis_person_name_given, context_id.')
        self.assertIsNone(self.store.find_resource_link('key1', 'link1'))
        self.assertIsNone(self.store.find_consumer('key1').last_access)

    def test_result_sourcedid_saved_and_withdrawn(self):
        params = launch_params(lis_result_sourcedid='src-1')
        self.assertTrue(self.authenticate(signed(params)).ok)
        link = self.store.find_resource_link('key1', 'link1')
        self.assertEqual(self.store.find_user(link, 'user1').lti_result_sourcedid, 'src-1')

        self.assertTrue(self.authenticate(signed(launch_params())).ok)
        self.assertIsNone(self.store.find_user(link, 'user1'))

    def test_default_email_domain(self):
        authenticator = LaunchAuthenticator(self.store, default_email='@example.edu')
        result = authenticator.authenticate(signed(launch_params()), LAUNCH_URL, now=NOW)
        self.assertEqual(result.user.email, 'user1@example.edu')

    def test_debug_request(self):
        result = self.authenticate(signed(launch_params(custom_debug='true'), secret='wrong'))
        self.assertTrue(result.debug)
        self.assertEqual(result.public_reason, result.reason)

        result = self.authenticate(signed(launch_params(), secret='wrong'))
        self.assertIsNone(result.public_reason)

    def test_get_context_deprecated(self):
        result = self.authenticate(signed(launch_params()))
        with self.assertWarns(DeprecationWarning):
            self.assertEqual(result.get_context(), result.resource_link)

    def test_session_data(self):
        result = self.authenticate(signed(launch_params()))
        data = result.as_session_data()
        self.assertEqual(data['consumer_key'], 'key1')
        self.assertEqual(data['resource_link_id'], 'link1')
        self.assertEqual(data['roles'], ['urn:lti:role:ims/lis/Instructor'])
        self.assertEqual(data['user_id'], 'user1')

        self.assertEqual(result.as_session_data(ID_SCOPE_CONTEXT)['user_id'], 'key1:ctx1:user1')


# ==============================================================================
# Shared resource links
# ==============================================================================

class ShareResolutionTestCase(SimpleTestCase):
    """Tests for launches carrying (or bound by) a share key."""

    def setUp(self):
        self.store = make_store(
            ToolConsumer(key='key1', secret='secret1', enabled=True),
            ToolConsumer(key='key2', secret='secret2', enabled=True),
        )
        self.primary = ResourceLink('key1', 'link1', title='Primary')
        self.store.save_resource_link(self.primary)
        self.resolver = ShareResolver(self.store, allow_sharing=True)
        self.authenticator = LaunchAuthenticator(self.store, allow_sharing=True)

    def launch_from_key2(self, **overrides):
        params = signed(launch_params(resource_link_id='linkX', **overrides), key='key2', secret='secret2')
        return self.authenticator.authenticate(params, LAUNCH_URL, now=NOW)

    def test_auto_approved_share(self):
        """Test an auto-approved share key makes the launch use the primary link."""
        share_key = self.resolver.issue_share_key(self.primary, auto_approve=True)

        result = self.launch_from_key2(custom_share_key=share_key.share_key_id)

        self.assertTrue(result.ok, result.reason)
        self.assertEqual((result.resource_link.consumer_key, result.resource_link.resource_link_id),
                         ('key1', 'link1'))
        shadow = self.store.find_resource_link('key2', 'linkX')
        self.assertEqual(shadow.primary_consumer_key, 'key1')
        self.assertEqual(shadow.primary_resource_link_id, 'link1')
        self.assertTrue(shadow.share_approved)
        self.assertIsNone(self.store.find_share_key(shadow, share_key.share_key_id))
        self.assertEqual([link.resource_link_id for link in self.resolver.list_shares(self.primary)], ['linkX'])

    def test_share_pending_approval(self):
        """Test an unapproved share is recorded but refused until approved."""
        share_key = self.resolver.issue_share_key(self.primary, auto_approve=False)

        result = self.launch_from_key2(custom_share_key=share_key.share_key_id)
        self.assertEqual(result.reason_code, 'share_pending_approval')
        shadow = self.store.find_resource_link('key2', 'linkX')
        self.assertFalse(shadow.share_approved)

        self.assertTrue(self.resolver.approve_share('key2', 'linkX'))
        result = self.launch_from_key2(custom_share_key=share_key.share_key_id)
        self.assertTrue(result.ok, result.reason)
        self.assertEqual(result.resource_link.resource_link_id, 'link1')

    def test_sharing_disabled(self):
        share_key = self.resolver.issue_share_key(self.primary, auto_approve=True)
        self.authenticator = LaunchAuthenticator(self.store, allow_sharing=False)

        result = self.launch_from_key2(custom_share_key=share_key.share_key_id)
        self.assertEqual(result.reason_code, 'sharing_disabled')
        self.assertIsNotNone(self.store.find_share_key(self.primary, share_key.share_key_id))

    def test_self_share_refused(self):
        share_key = self.resolver.issue_share_key(self.primary, auto_approve=True)
        params = signed(launch_params(custom_share_key=share_key.share_key_id))

        result = self.authenticator.authenticate(params, LAUNCH_URL, now=NOW)
        self.assertEqual(result.reason_code, 'self_share_requested')

    def test_unknown_share_key(self):
        """Test an unknown key fails but still records the requester's link."""
        result = self.launch_from_key2(custom_share_key='nope1234')

        self.assertEqual(result.reason_code, 'share_resolution_failed')
        self.assertEqual(result.reason, 'You have requested to share a resource link but none is available.')
        self.assertIsNotNone(self.store.find_resource_link('key2', 'linkX'))

    def test_share_key_claimed_once(self):
        """Test a launch that loses the share key to another launch is not bound."""
        share_key = self.resolver.issue_share_key(self.primary, auto_approve=True)

        with patch.object(self.store, 'delete_share_key', return_value=False):
            result = self.launch_from_key2(custom_share_key=share_key.share_key_id)

        self.assertEqual(result.reason_code, 'share_resolution_failed')
        self.assertEqual(result.reason, 'This share key has already been used.')
        self.assertFalse(self.store.find_resource_link('key2', 'linkX').has_primary)

    def test_share_key_single_use(self):
        share_key = self.resolver.issue_share_key(self.primary, auto_approve=True)
        self.assertTrue(self.launch_from_key2(custom_share_key=share_key.share_key_id).ok)

        params = signed(launch_params(resource_link_id='linkY', custom_share_key=share_key.share_key_id),
                        key='key2', secret='secret2')
        result = self.authenticator.authenticate(params, LAUNCH_URL, now=NOW)
        self.assertEqual(result.reason_code, 'share_resolution_failed')
        self.assertFalse(self.store.find_resource_link('key2', 'linkY').has_primary)

    def test_expired_share_key(self):
        share_key = self.resolver.issue_share_key(self.primary, auto_approve=True,
                                                  now=utcnow() - timedelta(hours=25))

        result = self.launch_from_key2(custom_share_key=share_key.share_key_id)
        self.assertEqual(result.reason_code, 'share_resolution_failed')
        self.assertNotIn(share_key.share_key_id, self.store.share_keys)

    def test_unexpected_share(self):
        """Test a bound link launched without a share key is refused."""
        shadow = ResourceLink('key2', 'linkX')
        shadow.bind_primary('key1', 'link1', True)
        self.store.save_resource_link(shadow)

        result = self.launch_from_key2()
        self.assertEqual(result.reason_code, 'unexpected_share')

    def test_missing_primary_link(self):
        shadow = ResourceLink('key2', 'linkX')
        shadow.bind_primary('key1', 'gone', True)
        self.store.save_resource_link(shadow)

        result = self.launch_from_key2(custom_share_key='whatever')
        self.assertEqual(result.reason, 'Unable to load resource link being shared.')

    def test_issue_share_key_bounds(self):
        share_key = self.resolver.issue_share_key(self.primary, length=100, life=timedelta(days=30), now=NOW)
        self.assertEqual(len(share_key.share_key_id), 32)
        self.assertEqual(share_key.expires, NOW + timedelta(hours=168))

        share_key = self.resolver.issue_share_key(self.primary, length=2, now=NOW)
        self.assertEqual(len(share_key.share_key_id), 5)


# ==============================================================================
# Tool provider and outcomes
# ==============================================================================

class ToolProviderTestCase(SimpleTestCase):
    """Tests for handler dispatch and launch outcomes."""

    def setUp(self):
        self.store = make_store()

    def provider(self, handlers):
        return ToolProvider(handlers, LaunchAuthenticator(self.store))

    def test_normalize_handlers(self):
        def on_launch(result):
            return Continue()

        def on_error(result):
            return None

        self.assertEqual(normalize_handlers(on_launch), {CONNECT: on_launch})
        self.assertEqual(normalize_handlers({ERROR: on_error})[CONNECT], on_error)
        self.assertEqual(normalize_handlers(None), {})

    def test_connect_outcome_returned(self):
        provider = self.provider(lambda result: Redirect(f"/courses/{result.resource_link.context_id}/"))

        outcome = provider.handle(signed(launch_params()), LAUNCH_URL, now=NOW)
        self.assertEqual(outcome, Redirect('/courses/ctx1/'))
        self.assertTrue(provider.last_result.ok)

    def test_failure_renders_error(self):
        provider = self.provider(lambda result: Continue())

        outcome = provider.handle(signed(launch_params(), secret='wrong'), LAUNCH_URL, now=NOW)
        self.assertIsInstance(outcome, RenderOutput)
        self.assertEqual(outcome.status, 400)
        self.assertEqual(outcome.content, 'Error: Sorry, there was an error connecting you to the application.')

    def test_failure_redirects_to_return_url(self):
        """Test a failed launch with a return URL sends the error back to the consumer."""
        provider = self.provider(lambda result: Continue())
        params = signed(launch_params(launch_presentation_return_url='https://lms.example.com/return?x=1'),
                        secret='wrong')

        outcome = provider.handle(params, LAUNCH_URL, now=NOW)
        self.assertIsInstance(outcome, Redirect)
        self.assertTrue(outcome.url.startswith('https://lms.example.com/return?x=1&lti_errormsg='))
        self.assertIn('lti_errorlog=Debug+error', outcome.url)

    def test_policy_reason_kept_from_consumer(self):
        """Test consumer policy failures send only the generic message unless debugging."""
        self.store.save_consumer(ToolConsumer(key='key1', secret='secret1', enabled=True,
                                              protected=True, consumer_guid='guid-a'))
        provider = self.provider(lambda result: Continue())
        return_url = 'https://lms.example.com/return'

        params = signed(launch_params(tool_consumer_instance_guid='guid-b',
                                      launch_presentation_return_url=return_url))
        outcome = provider.handle(params, LAUNCH_URL, now=NOW)
        query = parse_qs(urlsplit(outcome.url).query)
        self.assertEqual(query['lti_errormsg'], ['Sorry, there was an error connecting you to the application.'])
        self.assertNotIn('lti_errorlog', query)
        self.assertEqual(provider.last_result.reason, 'Request is from an invalid tool consumer.')

        params = signed(launch_params(tool_consumer_instance_guid='guid-b', custom_debug='true',
                                      launch_presentation_return_url=return_url))
        outcome = provider.handle(params, LAUNCH_URL, now=NOW)
        query = parse_qs(urlsplit(outcome.url).query)
        self.assertEqual(query['lti_errormsg'], ['Debug error: Request is from an invalid tool consumer.'])

    def test_unknown_consumer_reason_kept_from_consumer(self):
        provider = self.provider(lambda result: Continue())
        params = signed(launch_params(launch_presentation_return_url='https://lms.example.com/return'),
                        key='nobody')

        outcome = provider.handle(params, LAUNCH_URL, now=NOW)
        self.assertNotIn('lti_errorlog', parse_qs(urlsplit(outcome.url).query))

    def test_handler_reject(self):
        provider = self.provider(lambda result: Reject('Course is closed.'))

        outcome = provider.handle(signed(launch_params()), LAUNCH_URL, now=NOW)
        self.assertIsInstance(outcome, RenderOutput)
        self.assertEqual(provider.last_result.reason_code, 'rejected_by_handler')
        self.assertEqual(provider.last_result.reason, 'Course is closed.')

    def test_error_handler_outcome(self):
        provider = self.provider({
            CONNECT: lambda result: Continue(),
            ERROR: lambda result: RenderOutput(f"Custom: {result.reason_code}", 403),
        })

        outcome = provider.handle(signed(launch_params(), secret='wrong'), LAUNCH_URL, now=NOW)
        self.assertEqual(outcome, RenderOutput('Custom: signature_invalid', 403))

    def test_handler_must_return_outcome(self):
        provider = self.provider(lambda result: '/somewhere/')

        with self.assertRaises(TypeError):
            provider.handle(signed(launch_params()), LAUNCH_URL, now=NOW)

    def test_debug_error_outcome(self):
        result = LaunchResult(ok=False, reason='Invalid signature', debug=True,
                              return_url='https://lms.example.com/return')
        outcome = error_outcome(result)
        self.assertEqual(outcome.url, 'https://lms.example.com/return?lti_errormsg=Debug+error%3A+Invalid+signature')


# ==============================================================================
# Configuration
# ==============================================================================

class ProviderConfigTestCase(SimpleTestCase):
    """Tests for LTI_PROVIDER settings and environment overrides."""

    @override_settings(LTI_PROVIDER={'ALLOW_SHARING': False, 'TIMESTAMP_THRESHOLD': 60})
    @patch.dict(os.environ, {'LTI_ALLOW_SHARING': 'true', 'LTI_DEFAULT_EMAIL': '@example.edu'})
    def test_environment_overrides(self):
        config = get_provider_config()
        self.assertTrue(config['ALLOW_SHARING'])
        self.assertEqual(config['DEFAULT_EMAIL'], '@example.edu')
        self.assertEqual(config['TIMESTAMP_THRESHOLD'], 60)
        self.assertEqual(config['DATA_STORE'], 'lti.storage.DjangoDataStore')

    @override_settings(LTI_PROVIDER={})
    @patch.dict(os.environ, {'LTI_TIMESTAMP_THRESHOLD': 'soon'})
    def test_invalid_threshold_ignored(self):
        self.assertEqual(get_provider_config()['TIMESTAMP_THRESHOLD'], 300)

    def test_load_handlers(self):
        loaded = load_handlers({'connect': 'lti.handlers.connect'})
        self.assertIs(loaded['connect'], handlers.connect)

    @override_settings(LTI_PROVIDER={'LANDING_URL': '/welcome/'})
    def test_default_connect_handler_redirects(self):
        self.assertEqual(handlers.connect(None), Redirect('/welcome/'))

    @override_settings(LTI_PROVIDER={'LANDING_URL': ''})
    def test_default_connect_handler_continues(self):
        self.assertEqual(handlers.connect(None), Continue())

    @override_settings(LTI_PROVIDER={'CONSTRAINTS': {'user_id': {'required': True}}})
    def test_from_settings(self):
        provider = ToolProvider.from_settings(store=make_store())
        self.assertEqual([c.name for c in provider.authenticator.constraints], ['user_id'])
        self.assertIn(CONNECT, provider.handlers)


# ==============================================================================
# Database and cache stores
# ==============================================================================

class DjangoDataStoreTestCase(TestCase):
    """Tests for the ORM backed data store."""

    def setUp(self):
        self.store = DjangoDataStore()
        self.store.save_consumer(ToolConsumer(key='key1', secret='secret1', name='LMS', enabled=True))

    def test_consumer_round_trip(self):
        consumer = self.store.find_consumer('key1')
        self.assertEqual(consumer.secret, 'secret1')
        self.assertTrue(consumer.enabled)
        self.assertIsNotNone(consumer.created)

        consumer.consumer_guid = 'guid-a'
        self.assertTrue(self.store.save_consumer(consumer))
        self.assertEqual(LTIConsumer.objects.get(pk='key1').consumer_guid, 'guid-a')
        self.assertEqual([c.key for c in self.store.list_consumers()], ['key1'])
        self.assertIsNone(self.store.find_consumer('missing'))

    def test_resource_link_requires_consumer(self):
        self.assertFalse(self.store.save_resource_link(ResourceLink('missing', 'link1')))

        link = ResourceLink('key1', 'link1', title='Algebra', settings={'custom_a': '1'})
        self.assertTrue(self.store.save_resource_link(link))
        found = self.store.find_resource_link('key1', 'link1')
        self.assertEqual(found.settings, {'custom_a': '1'})
        self.assertFalse(found.has_primary)

    def test_save_nonce_is_compare_and_insert(self):
        nonce = ConsumerNonce('key1', 'abc', NOW + timedelta(minutes=30))

        self.assertTrue(self.store.save_nonce(nonce, NOW))
        self.assertFalse(self.store.save_nonce(nonce, NOW))
        self.assertEqual(LTIConsumerNonce.objects.count(), 1)

    def test_expired_nonce_row_reused(self):
        self.store.save_nonce(ConsumerNonce('key1', 'abc', NOW), NOW - timedelta(minutes=30))

        later = NOW + timedelta(minutes=1)
        self.assertTrue(self.store.save_nonce(ConsumerNonce('key1', 'abc', later + timedelta(minutes=30)), later))
        self.assertEqual(self.store.find_nonce('key1', 'abc').expires, later + timedelta(minutes=30))

    def test_share_keys(self):
        primary = ResourceLink('key1', 'link1')
        self.store.save_resource_link(primary)
        share_key = ResourceLinkShareKey('abcde', 'key1', 'link1', auto_approve=True,
                                         expires=utcnow() + timedelta(hours=1))

        self.assertTrue(self.store.save_share_key(share_key))
        found = self.store.find_share_key(primary, 'abcde')
        self.assertEqual((found.primary_consumer_key, found.primary_resource_link_id), ('key1', 'link1'))
        self.assertTrue(found.auto_approve)

        self.assertTrue(self.store.delete_share_key(found))
        self.assertFalse(LTIShareKey.objects.exists())

    def test_share_key_for_unknown_link(self):
        share_key = ResourceLinkShareKey('abcde', 'key1', 'nope', expires=utcnow() + timedelta(hours=1))
        self.assertFalse(self.store.save_share_key(share_key))

    def test_expired_share_key_deleted_on_lookup(self):
        primary = ResourceLink('key1', 'link1')
        self.store.save_resource_link(primary)
        self.store.save_share_key(ResourceLinkShareKey('old12', 'key1', 'link1',
                                                       expires=utcnow() - timedelta(minutes=1)))

        self.assertIsNone(self.store.find_share_key(primary, 'old12'))
        self.assertFalse(LTIShareKey.objects.filter(pk='old12').exists())

    def test_users(self):
        link = ResourceLink('key1', 'link1', context_id='ctx1')
        self.store.save_resource_link(link)
        user = LaunchUser('key1', 'link1', 'user1', lti_result_sourcedid='src-1')

        self.assertTrue(self.store.save_user(user))
        found = self.store.find_user(link, 'user1')
        self.assertEqual(found.lti_result_sourcedid, 'src-1')
        self.assertEqual(found.context_id, 'ctx1')

        self.assertTrue(self.store.delete_user(found))
        self.assertFalse(LTIUser.objects.exists())

    def test_list_shares(self):
        primary = ResourceLink('key1', 'link1')
        shadow = ResourceLink('key1', 'link2')
        shadow.bind_primary('key1', 'link1', None)
        self.store.save_resource_link(primary)
        self.store.save_resource_link(shadow)

        self.assertEqual([link.resource_link_id for link in self.store.list_shares(primary)], ['link2'])

    def test_launch_against_database(self):
        """Test the full pipeline persists its state through the ORM."""
        authenticator = LaunchAuthenticator(self.store)
        params = signed(launch_params(lis_result_sourcedid='src-1', custom_unit='3'))

        result = authenticator.authenticate(params, LAUNCH_URL, now=NOW)
        self.assertTrue(result.ok, result.reason)
        link = LTIResourceLink.objects.get(consumer_id='key1', resource_link_id='link1')
        self.assertEqual(link.title, 'Algebra: Week 1')
        self.assertEqual(link.settings['custom_unit'], '3')
        self.assertTrue(LTIUser.objects.filter(user_id='user1', lti_result_sourcedid='src-1').exists())
        self.assertEqual(LTIConsumer.objects.get(pk='key1').last_access, date(2024, 5, 1))

        replay = authenticator.authenticate(params, LAUNCH_URL, now=NOW)
        self.assertEqual(replay.reason_code, 'replayed_nonce')


class CacheDataStorageTestCase(TestCase):
    """Tests for nonces kept in the Django cache."""

    def setUp(self):
        cache.clear()
        self.store = CacheDataStorage()

    def test_cached_nonce_replay(self):
        nonce = ConsumerNonce('key1', 'has spaces and :colons', NOW + timedelta(minutes=30))

        self.assertTrue(self.store.save_nonce(nonce, NOW))
        self.assertFalse(self.store.save_nonce(nonce, NOW))
        self.assertEqual(self.store.find_nonce('key1', nonce.value).expires, nonce.expires)
        self.assertIsNone(self.store.find_nonce('key2', nonce.value))
        self.assertFalse(LTIConsumerNonce.objects.exists())


# ==============================================================================
# Views, commands and admin
# ==============================================================================

@override_settings(LTI_PROVIDER={'CONSTRAINTS': {'user_id': {'required': True}}, 'LANDING_URL': ''})
class LTILaunchViewTestCase(TestCase):
    """Tests for the launch endpoint."""

    def setUp(self):
        DjangoDataStore().save_consumer(ToolConsumer(key='key1', secret='secret1', enabled=True))
        self.url = reverse('lti:launch')

    def launch(self, params, secret='secret1', origin='http://testserver', **extra):
        signed_params = sign_launch_params(params, 'key1', secret, origin + self.url)
        return self.client.post(self.url, signed_params, **extra)

    @override_settings(LTI_PROVIDER={'ID_SCOPE': 1})
    def test_session_user_id_scope(self):
        self.launch(launch_params())
        self.assertEqual(self.client.session['lti_launch']['user_id'], 'key1:user1')

    @override_settings(SECURE_PROXY_SSL_HEADER=('HTTP_X_FORWARDED_PROTO', 'https'))
    def test_launch_behind_tls_proxy(self):
        """Test a launch signed for the public https URL verifies behind a proxy."""
        response = self.launch(launch_params(), origin='https://testserver', HTTP_X_FORWARDED_PROTO='https')
        self.assertEqual(response.status_code, 204)

    @override_settings(SECURE_PROXY_SSL_HEADER=None)
    def test_launch_proxy_headers_ignored_by_default(self):
        response = self.launch(launch_params(), origin='https://testserver', HTTP_X_FORWARDED_PROTO='https')
        self.assertEqual(response.status_code, 400)

    def test_launch_success(self):
        response = self.launch(launch_params())

        self.assertEqual(response.status_code, 204)
        session_data = self.client.session['lti_launch']
        self.assertEqual(session_data['consumer_key'], 'key1')
        self.assertEqual(session_data['user_id'], 'user1')

    @override_settings(LTI_PROVIDER={'LANDING_URL': '/welcome/'})
    def test_launch_redirects_to_landing_page(self):
        response = self.launch(launch_params())
        self.assertRedirects(response, '/welcome/', fetch_redirect_response=False)

    def test_launch_bad_signature(self):
        response = self.launch(launch_params(), secret='wrong')

        self.assertEqual(response.status_code, 400)
        self.assertTrue(response.content.startswith(b'Error:'))
        self.assertNotIn('lti_launch', self.client.session)

    def test_launch_constraint_from_settings(self):
        response = self.launch(launch_params(user_id=None, launch_presentation_return_url='https://lms.example.com/'))

        self.assertEqual(response.status_code, 302)
        self.assertIn('lti_errorlog=Debug+error%3A+Invalid+parameter%28s%29%3A+user_id.', response['Location'])

    def test_launch_requires_post(self):
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, 405)


class CleanupCommandTestCase(TestCase):

    def setUp(self):
        consumer = LTIConsumer.objects.create(consumer_key='key1', secret='secret1')
        link = LTIResourceLink.objects.create(consumer=consumer, resource_link_id='link1')
        past = utcnow() - timedelta(minutes=1)
        future = utcnow() + timedelta(minutes=30)
        LTIConsumerNonce.objects.create(consumer=consumer, value='old', expires=past)
        LTIConsumerNonce.objects.create(consumer=consumer, value='new', expires=future)
        LTIShareKey.objects.create(share_key_id='old12', resource_link=link, expires=past)

    def test_dry_run(self):
        out = StringIO()
        call_command('cleanup_lti_nonces', '--dry-run', stdout=out)

        self.assertIn('Would delete 1 expired nonces and 1 expired share keys.', out.getvalue())
        self.assertEqual(LTIConsumerNonce.objects.count(), 2)

    def test_cleanup(self):
        out = StringIO()
        call_command('cleanup_lti_nonces', stdout=out)

        self.assertIn('cleaned up 1 expired nonces and 1 expired share keys', out.getvalue())
        self.assertEqual(list(LTIConsumerNonce.objects.values_list('value', flat=True)), ['new'])
        self.assertFalse(LTIShareKey.objects.exists())


class AdminRegistrationTestCase(SimpleTestCase):

    def test_models_registered(self):
        for model in (LTIConsumer, LTIResourceLink, LTIConsumerNonce, LTIShareKey, LTIUser):
            with self.subTest(model=model.__name__):
                self.assertTrue(admin.site.is_registered(model))
