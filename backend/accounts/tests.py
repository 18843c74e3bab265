from datetime import timedelta
from io import StringIO

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient
from unittest.mock import patch

from common.exceptions import Revoked, TransientStoreError, Unauthenticated
from common.fast_kv import FastKV
from common.testing import FakeRedisMixin
from .models import Account, OTPRecord
from .otp import OTPAuthenticator
from .sessions import SessionRegistry


PHONE = '01700000001'


class OTPAuthenticatorTests(FakeRedisMixin, TestCase):
	def setUp(self):
		super().setUp()
		self.otp = OTPAuthenticator()

	def test_issue_stores_code_in_redis_and_audit_table(self):
		code = self.otp.issue(PHONE, 'customer_login')

		self.assertEqual(len(code), 6)
		self.assertEqual(self.redis.get('otp:%s' % PHONE), 'customer_login:%s' % code)
		self.assertLessEqual(self.redis.ttl('otp:%s' % PHONE), 120)
		record = OTPRecord.objects.get(phone=PHONE)
		self.assertEqual(record.code, code)
		self.assertFalse(record.is_verified)

	def test_code_is_single_use(self):
		code = self.otp.issue(PHONE, 'customer_login')

		self.assertTrue(self.otp.verify(PHONE, code))
		self.assertFalse(self.otp.verify(PHONE, code))
		self.assertTrue(OTPRecord.objects.get(phone=PHONE).is_verified)

	def test_code_stays_single_use_when_marking_it_used_fails(self):
		code = self.otp.issue(PHONE, 'customer_login')
		mark_verified = self.otp._mark_verified
		failures = []

		def flaky_mark_verified(*args):
			if not failures:
				failures.append(args)
				raise TransientStoreError('audit store down')
			return mark_verified(*args)

		with patch.object(self.otp, '_mark_verified', side_effect=flaky_mark_verified):
			with self.assertRaises(TransientStoreError):
				self.otp.verify(PHONE, code)
			# The retry is served by the audit record, exactly once
			self.assertTrue(self.otp.verify(PHONE, code))
			self.assertFalse(self.otp.verify(PHONE, code))

		self.assertTrue(OTPRecord.objects.get(phone=PHONE).is_verified)

	def test_code_is_bound_to_its_purpose(self):
		code = self.otp.issue(PHONE, 'customer_login')

		self.assertFalse(self.otp.verify(PHONE, code, purpose='driver_login'))
		self.assertTrue(self.otp.verify(PHONE, code, purpose='customer_login'))

	def test_evicted_code_is_bound_to_its_purpose(self):
		code = self.otp.issue(PHONE, 'customer_login')
		self.redis.delete('otp:%s' % PHONE)

		self.assertFalse(self.otp.verify(PHONE, code, purpose='driver_login'))
		self.assertTrue(self.otp.verify(PHONE, code, purpose='customer_login'))

	def test_wrong_code_is_rejected_and_keeps_live_code(self):
		code = self.otp.issue(PHONE, 'customer_login')
		wrong = '000000' if code != '000000' else '111111'

		self.assertFalse(self.otp.verify(PHONE, wrong))
		self.assertTrue(self.otp.verify(PHONE, code))

	def test_evicted_code_verifies_from_audit_store_within_window(self):
		code = self.otp.issue('0100', 'driver_login')
		self.redis.delete('otp:0100')

		self.assertTrue(self.otp.verify('0100', code))
		self.assertFalse(self.otp.verify('0100', code))

	def test_evicted_code_fails_after_window(self):
		code = self.otp.issue('0100', 'driver_login')
		self.redis.delete('otp:0100')
		OTPRecord.objects.filter(phone='0100').update(
			expires_at=timezone.now() - timedelta(seconds=1)
		)

		self.assertFalse(self.otp.verify('0100', code))

	def test_redis_outage_falls_back_to_audit_store(self):
		code = self.otp.issue(PHONE, 'customer_login')

		with patch.object(FastKV, 'get', side_effect=TransientStoreError('down')):
			self.assertTrue(self.otp.verify(PHONE, code))

	def test_issue_fails_when_redis_write_fails(self):
		with patch.object(FastKV, 'set', side_effect=TransientStoreError('down')):
			with self.assertRaises(TransientStoreError):
				self.otp.issue(PHONE, 'customer_login')
		self.assertFalse(OTPRecord.objects.exists())

	def test_invalidate_kills_outstanding_codes(self):
		code = self.otp.issue(PHONE, 'customer_login')

		self.assertEqual(self.otp.invalidate(PHONE), 1)
		self.assertIsNone(self.redis.get('otp:%s' % PHONE))
		self.assertFalse(self.otp.verify(PHONE, code))

	def test_cleanup_deletes_old_records_only(self):
		self.otp.issue(PHONE, 'customer_login')
		old = self.otp.issue('01700000002', 'customer_login')
		OTPRecord.objects.filter(code=old, phone='01700000002').update(
			expires_at=timezone.now() - timedelta(days=10)
		)

		deleted = self.otp.cleanup(timezone.now() - timedelta(days=7))

		self.assertEqual(deleted, 1)
		self.assertEqual(OTPRecord.objects.count(), 1)

	def test_cleanup_command_dry_run_keeps_records(self):
		self.otp.issue(PHONE, 'customer_login')
		OTPRecord.objects.update(expires_at=timezone.now() - timedelta(days=30))

		call_command('cleanup_expired_otps', '--dry-run', stdout=StringIO())
		self.assertEqual(OTPRecord.objects.count(), 1)

		call_command('cleanup_expired_otps', stdout=StringIO())
		self.assertEqual(OTPRecord.objects.count(), 0)


class SessionRegistryTests(FakeRedisMixin, TestCase):
	def setUp(self):
		super().setUp()
		self.sessions = SessionRegistry()

	def test_issued_token_validates_to_principal(self):
		token = self.sessions.issue(7, 'driver')

		principal = self.sessions.validate(token)

		self.assertEqual(principal.id, 7)
		self.assertEqual(principal.role, 'driver')
		self.assertTrue(principal.is_driver)
		self.assertEqual(self.redis.get('session:driver:7'), token)

	def test_revoked_token_is_rejected(self):
		token = self.sessions.issue(7, 'customer')

		self.assertTrue(self.sessions.revoke(7, 'customer'))

		with self.assertRaises(Revoked):
			self.sessions.validate(token)
		self.assertFalse(self.sessions.revoke(7, 'customer'))

	def test_new_login_supersedes_old_token(self):
		old = self.sessions.issue(7, 'customer')
		new = self.sessions.issue(7, 'customer')

		self.assertEqual(self.sessions.validate(new).id, 7)
		with self.assertRaises(Revoked):
			self.sessions.validate(old)

	def test_same_id_in_other_role_is_a_separate_session(self):
		customer_token = self.sessions.issue(7, 'customer')
		self.sessions.issue(7, 'driver')

		self.assertTrue(self.sessions.validate(customer_token).is_customer)

	def test_garbage_token_is_unauthenticated(self):
		with self.assertRaises(Unauthenticated):
			self.sessions.validate('not-a-token')

	def test_unknown_role_cannot_be_issued(self):
		with self.assertRaises(ValueError):
			self.sessions.issue(7, 'admin')


class LoginFlowAPITests(FakeRedisMixin, TestCase):
	def setUp(self):
		super().setUp()
		self.client = APIClient()

	def _login(self, role='customer', **extra):
		response = self.client.post('/api/auth/otp/request/', {'phone': PHONE, 'role': role}, format='json')
		self.assertEqual(response.status_code, 201)
		code = OTPRecord.objects.filter(phone=PHONE).latest('created_at').code
		payload = {'phone': PHONE, 'code': code, 'role': role}
		payload.update(extra)
		return self.client.post('/api/auth/otp/verify/', payload, format='json')

	def test_first_login_creates_account_and_returns_token(self):
		response = self._login(name='Karim')

		self.assertEqual(response.status_code, 200)
		self.assertTrue(response.data['token'])
		account = Account.objects.get(phone_number=PHONE, role='customer')
		self.assertEqual(account.name, 'Karim')
		self.assertEqual(response.data['account']['id'], account.id)

	def test_driver_first_login_requires_vehicle_number(self):
		response = self._login(role='driver')

		self.assertEqual(response.status_code, 400)
		self.assertIn('vehicle_number', response.data)

		response = self._login(role='driver', vehicle_number='DHA-1234')
		self.assertEqual(response.status_code, 200)

	def test_wrong_code_is_401(self):
		self.client.post('/api/auth/otp/request/', {'phone': PHONE, 'role': 'customer'}, format='json')
		code = OTPRecord.objects.get(phone=PHONE).code
		wrong = '000000' if code != '000000' else '111111'

		response = self.client.post(
			'/api/auth/otp/verify/',
			{'phone': PHONE, 'code': wrong, 'role': 'customer'},
			format='json',
		)

		self.assertEqual(response.status_code, 401)
		self.assertEqual(response.data['code'], 'unauthenticated')

	def test_customer_code_cannot_open_a_driver_session(self):
		self.client.post('/api/auth/otp/request/', {'phone': PHONE, 'role': 'customer'}, format='json')
		code = OTPRecord.objects.get(phone=PHONE).code

		response = self.client.post(
			'/api/auth/otp/verify/',
			{'phone': PHONE, 'code': code, 'role': 'driver', 'vehicle_number': 'DHA-1234'},
			format='json',
		)

		self.assertEqual(response.status_code, 401)
		self.assertFalse(Account.objects.filter(role='driver').exists())

	def test_logout_revokes_token(self):
		token = self._login().data['token']
		self.client.credentials(HTTP_AUTHORIZATION='Bearer %s' % token)

		self.assertEqual(self.client.post('/api/auth/logout/').status_code, 200)
		self.assertEqual(self.client.post('/api/auth/logout/').status_code, 401)

	def test_requesting_a_new_code_invalidates_the_old_one(self):
		self.client.post('/api/auth/otp/request/', {'phone': PHONE, 'role': 'customer'}, format='json')
		self.client.post('/api/auth/otp/request/', {'phone': PHONE, 'role': 'customer'}, format='json')

		self.assertEqual(OTPRecord.objects.filter(phone=PHONE, is_expired=True).count(), 1)
		self.assertEqual(OTPRecord.objects.filter(phone=PHONE, is_expired=False).count(), 1)
