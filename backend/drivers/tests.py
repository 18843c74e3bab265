from datetime import timedelta
from io import StringIO

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from accounts.sessions import SessionRegistry
from common.exceptions import ValidationError
from common.testing import FakeRedisMixin
from .models import DriverPresence
from .services import PresenceTracker


# Dhaka, Gulshan area
PICKUP = (23.8100, 90.4120)
NEAR = (23.8103, 90.4125)
FAR = (23.9000, 90.5000)


class PresenceTrackerTests(FakeRedisMixin, TestCase):
	def setUp(self):
		super().setUp()
		self.tracker = PresenceTracker()

	def _age(self, driver_id, seconds):
		DriverPresence.objects.filter(driver_id=driver_id).update(
			last_ping_at=timezone.now() - timedelta(seconds=seconds)
		)

	def test_first_ping_creates_online_row(self):
		presence = self.tracker.ping(1, *NEAR)

		self.assertTrue(presence.is_online)
		self.assertEqual(presence.went_online_at, presence.last_ping_at)
		self.assertAlmostEqual(float(presence.latitude), NEAR[0], places=6)
		self.assertTrue(self.tracker.is_online(1))
		self.assertIsNotNone(self.redis.zscore('drivers:geo:ts', '1'))

	def test_repeat_ping_keeps_went_online_at(self):
		first = self.tracker.ping(1, *NEAR)
		second = self.tracker.ping(1, *PICKUP)

		self.assertEqual(second.went_online_at, first.went_online_at)
		self.assertGreaterEqual(second.last_ping_at, first.last_ping_at)
		self.assertEqual(DriverPresence.objects.count(), 1)

	def test_ping_after_going_stale_resets_went_online_at(self):
		first = self.tracker.ping(1, *NEAR)
		self._age(1, 600)

		second = self.tracker.ping(1, *NEAR)

		self.assertGreater(second.went_online_at, first.went_online_at)

	def test_driver_is_offline_once_ping_is_older_than_two_minutes(self):
		self.tracker.ping(1, *NEAR)
		self._age(1, 119)
		self.assertTrue(self.tracker.is_online(1))

		self._age(1, 121)
		self.assertFalse(self.tracker.is_online(1))

	def test_unknown_driver_is_not_online(self):
		self.assertFalse(self.tracker.is_online(404))
		self.assertIsNone(self.tracker.get_location(404))

	def test_filter_online_keeps_only_fresh_online_drivers(self):
		for driver_id in (1, 2, 3):
			self.tracker.ping(driver_id, *NEAR)
		self._age(2, 300)
		self.tracker.go_offline(3)

		self.assertEqual(self.tracker.filter_online([1, 2, 3, 4]), {1})
		self.assertEqual(self.tracker.filter_online([]), set())

	def test_go_offline(self):
		self.tracker.ping(1, *NEAR)

		self.assertTrue(self.tracker.go_offline(1))
		self.assertFalse(self.tracker.is_online(1))
		self.assertFalse(self.tracker.go_offline(99))
		self.assertEqual(self.tracker.find_nearby_drivers(*PICKUP, radius_meters=5000), [])

	def test_invalid_coordinates_are_rejected(self):
		with self.assertRaises(ValidationError):
			self.tracker.ping(1, 91, 90.4)
		with self.assertRaises(ValidationError):
			self.tracker.ping(1, 23.8, -181)
		self.assertFalse(DriverPresence.objects.exists())

	def test_find_nearby_drivers_sorted_and_filtered(self):
		self.tracker.ping(1, 23.8120, 90.4140)
		self.tracker.ping(2, *NEAR)
		self.tracker.ping(3, *FAR)
		self.tracker.ping(4, *NEAR)
		self._age(4, 300)

		drivers = self.tracker.find_nearby_drivers(*PICKUP, radius_meters=5000, limit=10)

		self.assertEqual([d.driver_id for d in drivers], [2, 1])
		self.assertLess(drivers[0].distance_meters, drivers[1].distance_meters)
		self.assertLess(drivers[0].distance_meters, 100)

	def test_find_nearby_drivers_respects_limit(self):
		for driver_id in range(1, 6):
			self.tracker.ping(driver_id, *NEAR)

		self.assertEqual(len(self.tracker.find_nearby_drivers(*PICKUP, radius_meters=5000, limit=2)), 2)

	def test_find_nearby_drivers_rejects_bad_radius(self):
		with self.assertRaises(ValidationError):
			self.tracker.find_nearby_drivers(*PICKUP, radius_meters=0)

	def test_get_location_only_when_fresh(self):
		self.tracker.ping(1, *NEAR)

		location = self.tracker.get_location(1)
		self.assertEqual(location.driver_id, 1)
		self.assertAlmostEqual(location.longitude, NEAR[1], places=6)

		self._age(1, 600)
		self.assertIsNone(self.tracker.get_location(1))

	def test_sweep_removes_stale_rows_and_index_members(self):
		self.tracker.ping(1, *NEAR)
		self.tracker.ping(2, *NEAR)
		self._age(2, 600)
		# Index timestamps follow the row in production
		self.redis.zadd('drivers:geo:ts', {'2': (timezone.now() - timedelta(seconds=600)).timestamp()})

		removed = self.tracker.sweep_stale()

		self.assertEqual(removed, 1)
		self.assertEqual(list(DriverPresence.objects.values_list('driver_id', flat=True)), [1])
		self.assertIsNone(self.redis.zscore('drivers:geo:ts', '2'))
		self.assertIsNotNone(self.redis.zscore('drivers:geo:ts', '1'))

	def test_sweep_command(self):
		self.tracker.ping(1, *NEAR)
		self._age(1, 600)
		out = StringIO()

		call_command('sweep_presence', stdout=out)

		self.assertIn('Removed 1', out.getvalue())


class DriverAPITests(FakeRedisMixin, TestCase):
	def setUp(self):
		super().setUp()
		self.client = APIClient()
		token = SessionRegistry().issue(11, 'driver')
		self.client.credentials(HTTP_AUTHORIZATION='Bearer %s' % token)

	def test_location_ping_marks_driver_online(self):
		response = self.client.post(
			'/api/driver/location/', {'latitude': NEAR[0], 'longitude': NEAR[1]}, format='json'
		)

		self.assertEqual(response.status_code, 200)
		self.assertTrue(response.data['presence']['is_online'])

		response = self.client.get('/api/driver/status/')
		self.assertEqual(response.data, {'driver_id': 11, 'is_online': True})

	def test_out_of_range_ping_is_400(self):
		response = self.client.post(
			'/api/driver/location/', {'latitude': 95, 'longitude': NEAR[1]}, format='json'
		)

		self.assertEqual(response.status_code, 400)

	def test_offline(self):
		self.client.post('/api/driver/location/', {'latitude': NEAR[0], 'longitude': NEAR[1]}, format='json')

		response = self.client.post('/api/driver/offline/')

		self.assertEqual(response.status_code, 200)
		self.assertFalse(self.client.get('/api/driver/status/').data['is_online'])

	def test_customer_cannot_use_driver_endpoints(self):
		token = SessionRegistry().issue(12, 'customer')
		self.client.credentials(HTTP_AUTHORIZATION='Bearer %s' % token)

		response = self.client.get('/api/driver/status/')

		self.assertEqual(response.status_code, 403)

	def test_missing_token_is_401(self):
		self.client.credentials()

		self.assertEqual(self.client.get('/api/driver/status/').status_code, 401)

	def test_current_ride_when_idle(self):
		response = self.client.get('/api/driver/current-ride/')

		self.assertEqual(response.status_code, 200)
		self.assertFalse(response.data['has_active_ride'])
