import importlib
import os
from unittest.mock import MagicMock, patch

import redis
from django.db import OperationalError
from django.db.models.query import QuerySet
from django.test import SimpleTestCase, TestCase
from rest_framework.test import APIClient

from accounts.sessions import SessionRegistry
from common.exceptions import NotFound, TransientStoreError
from common.fast_kv import FastKV
from common.geo_index import GeoIndex
from common.principal import Principal
from common.testing import FakeRedisMixin
from services.ride_management import RideLifecycle


CUSTOMER = Principal(id=1, role='customer')
DRIVER = Principal(id=101, role='driver')


def _failing_client(error):
	client = MagicMock()
	for command in ('get', 'set', 'delete', 'georadius', 'geopos', 'zrangebyscore'):
		getattr(client, command).side_effect = error
	client.pipeline.return_value.execute.side_effect = error
	return client


class StoreErrorTranslationTests(SimpleTestCase):
	def test_redis_timeout_in_fast_kv_is_transient(self):
		kv = FastKV(redis_client=_failing_client(redis.exceptions.TimeoutError('timed out')))

		with self.assertRaises(TransientStoreError):
			kv.get('otp:0100')
		with self.assertRaises(TransientStoreError):
			kv.set('otp:0100', '123456', 60)
		with self.assertRaises(TransientStoreError):
			kv.delete('otp:0100')

	def test_redis_outage_in_geo_index_is_transient_not_empty(self):
		index = GeoIndex('rides:open:geo', redis_client=_failing_client(redis.exceptions.ConnectionError('refused')))

		with self.assertRaises(TransientStoreError):
			index.query(23.81, 90.412, 5000, 10)
		with self.assertRaises(TransientStoreError):
			index.upsert(1, 23.81, 90.412)
		with self.assertRaises(TransientStoreError):
			index.position(1)

	def test_other_redis_errors_are_not_swallowed(self):
		kv = FastKV(redis_client=_failing_client(redis.exceptions.ResponseError('WRONGTYPE')))

		with self.assertRaises(redis.exceptions.ResponseError):
			kv.get('otp:0100')


class DatabaseErrorTranslationTests(FakeRedisMixin, TestCase):
	def setUp(self):
		super().setUp()
		self.lifecycle = RideLifecycle()
		self.ride = self.lifecycle.request_ride(CUSTOMER, (23.81, 90.412), (23.78, 90.40)).ride

	def test_database_outage_on_read_is_transient_not_not_found(self):
		with patch.object(QuerySet, 'get', side_effect=OperationalError('server closed the connection')):
			with self.assertRaises(TransientStoreError) as ctx:
				self.lifecycle.get_status(CUSTOMER, self.ride.id)

		self.assertNotIsInstance(ctx.exception, NotFound)

	def test_statement_timeout_on_accept_is_transient(self):
		with patch.object(QuerySet, 'update', side_effect=OperationalError('canceling statement due to statement timeout')):
			with self.assertRaises(TransientStoreError):
				self.lifecycle.accept(DRIVER, self.ride.id)


class StoreUnavailableAPITests(FakeRedisMixin, TestCase):
	def setUp(self):
		super().setUp()
		self.lifecycle = RideLifecycle()
		self.ride = self.lifecycle.request_ride(CUSTOMER, (23.81, 90.412), (23.78, 90.40)).ride
		self.client = APIClient()
		self.client.credentials(
			HTTP_AUTHORIZATION='Bearer %s' % SessionRegistry().issue(DRIVER.id, 'driver')
		)

	def test_database_outage_is_503(self):
		with patch.object(QuerySet, 'update', side_effect=OperationalError('database is locked')):
			response = self.client.post('/api/rides/%d/accept/' % self.ride.id)

		self.assertEqual(response.status_code, 503)
		self.assertEqual(response.data['code'], 'store_unavailable')

	def test_redis_outage_during_authentication_is_503_not_401(self):
		with patch.object(self.redis, 'get', side_effect=redis.exceptions.ConnectionError('refused')):
			response = self.client.get('/api/driver/status/')

		self.assertEqual(response.status_code, 503)
		self.assertEqual(response.data['code'], 'store_unavailable')

	def test_redis_outage_in_nearby_search_is_503(self):
		with patch.object(self.redis, 'georadius', side_effect=redis.exceptions.TimeoutError('timed out')):
			response = self.client.post(
				'/api/driver/nearby-rides/', {'latitude': 23.81, 'longitude': 90.412}, format='json'
			)

		self.assertEqual(response.status_code, 503)


class DatabaseSettingsTests(SimpleTestCase):
	def _load_settings(self, env):
		module = importlib.import_module('ride_engine.settings.settings')
		with patch.dict(os.environ, env):
			importlib.reload(module)
		self.addCleanup(importlib.reload, module)
		return module

	def test_postgres_queries_have_a_statement_timeout(self):
		module = self._load_settings({'DB_ENGINE': 'postgres', 'DB_STATEMENT_TIMEOUT_MS': '1500'})

		options = module.DATABASES['default']['OPTIONS']
		self.assertEqual(options['options'], '-c statement_timeout=1500')
