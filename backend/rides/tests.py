from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from io import StringIO
import threading

from django.core.management import call_command
from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone
from rest_framework.test import APIClient
from unittest.mock import patch

from accounts.models import Account
from accounts.sessions import SessionRegistry
from common.exceptions import ConflictError, Forbidden, TransientStoreError, ValidationError
from common.geo_index import GeoIndex
from common.principal import Principal
from common.testing import FakeRedisMixin
from drivers.services import PresenceTracker
from services.ride_management import (
	InvalidTransitionError,
	RideLifecycle,
	RideNotAvailableError,
	RideNotFoundError,
	clamp_limit,
)
from .models import Ride


# Dhaka, Gulshan area
PICKUP = (23.8100, 90.4120)
DROPOFF = (23.7800, 90.4000)
NEAR = (23.8103, 90.4125)
FAR = (23.9000, 90.5000)

CUSTOMER = Principal(id=1, role='customer')
OTHER_CUSTOMER = Principal(id=2, role='customer')
DRIVER_A = Principal(id=101, role='driver')
DRIVER_B = Principal(id=102, role='driver')


class RideLifecycleTestMixin(FakeRedisMixin):
	def setUp(self):
		super().setUp()
		self.lifecycle = RideLifecycle()
		self.presence = PresenceTracker()

	def _request(self, customer=CUSTOMER, pickup=PICKUP):
		return self.lifecycle.request_ride(customer, pickup, DROPOFF).ride

	def _age(self, ride, seconds):
		Ride.objects.filter(id=ride.id).update(updated_at=timezone.now() - timedelta(seconds=seconds))


class RideRequestTests(RideLifecycleTestMixin, TestCase):
	def test_request_creates_open_ride_and_index_entry(self):
		ride = self._request()

		self.assertEqual(ride.status, Ride.STATUS_REQUESTED)
		self.assertEqual(ride.customer_id, CUSTOMER.id)
		self.assertIsNone(ride.driver_id)
		self.assertIsNotNone(GeoIndex('rides:open:geo').position(ride.id))

	def test_request_rejects_bad_coordinates(self):
		with self.assertRaises(ValidationError):
			self.lifecycle.request_ride(CUSTOMER, (91, 90.4), DROPOFF)
		with self.assertRaises(ValidationError):
			self.lifecycle.request_ride(CUSTOMER, PICKUP, (23.7, 181))
		self.assertFalse(Ride.objects.exists())

	def test_driver_cannot_request(self):
		with self.assertRaises(Forbidden):
			self.lifecycle.request_ride(DRIVER_A, PICKUP, DROPOFF)

	def test_index_failure_rolls_back_the_row(self):
		with patch.object(GeoIndex, 'upsert', side_effect=TransientStoreError('down')):
			with self.assertRaises(TransientStoreError):
				self._request()
		self.assertFalse(Ride.objects.exists())


class NearbyOpenRidesTests(RideLifecycleTestMixin, TestCase):
	def test_driver_sees_nearby_open_ride(self):
		ride = self._request()

		rides = self.lifecycle.find_nearby_open_rides(*NEAR, radius_meters=5000)

		self.assertEqual([r.id for r in rides], [ride.id])
		self.assertLess(rides[0].distance_m, 100)

	def test_nearest_first(self):
		far_ride = self._request(pickup=(23.8200, 90.4200))
		near_ride = self._request(pickup=NEAR)

		rides = self.lifecycle.find_nearby_open_rides(*PICKUP, radius_meters=5000)

		self.assertEqual([r.id for r in rides], [near_ride.id, far_ride.id])

	def test_out_of_radius_ride_is_excluded(self):
		self._request(pickup=FAR)

		self.assertEqual(self.lifecycle.find_nearby_open_rides(*PICKUP, radius_meters=5000), [])

	def test_stale_ride_is_excluded(self):
		ride = self._request()
		self._age(ride, 6 * 60)

		self.assertEqual(self.lifecycle.find_nearby_open_rides(*PICKUP, radius_meters=5000), [])

	def test_ride_just_inside_freshness_window_is_included(self):
		ride = self._request()
		self._age(ride, 4 * 60)

		self.assertEqual(len(self.lifecycle.find_nearby_open_rides(*PICKUP, radius_meters=5000)), 1)

	def test_pending_counts_as_open(self):
		ride = self._request()
		Ride.objects.filter(id=ride.id).update(status=Ride.STATUS_PENDING)

		self.assertEqual(len(self.lifecycle.find_nearby_open_rides(*PICKUP, radius_meters=5000)), 1)

	def test_accepted_ride_is_excluded_even_if_still_indexed(self):
		ride = self._request()
		Ride.objects.filter(id=ride.id).update(status=Ride.STATUS_ACCEPTED, driver_id=DRIVER_A.id)

		self.assertEqual(self.lifecycle.find_nearby_open_rides(*PICKUP, radius_meters=5000), [])

	def test_limit(self):
		for _ in range(5):
			self._request()

		self.assertEqual(len(self.lifecycle.find_nearby_open_rides(*PICKUP, radius_meters=5000, limit=2)), 2)

	def test_clamp_limit(self):
		self.assertEqual(clamp_limit(None), 50)
		self.assertEqual(clamp_limit(0), 1)
		self.assertEqual(clamp_limit(-5), 1)
		self.assertEqual(clamp_limit(30), 30)
		self.assertEqual(clamp_limit(1000), 100)

	def test_bad_radius(self):
		with self.assertRaises(ValidationError):
			self.lifecycle.find_nearby_open_rides(*PICKUP, radius_meters=-1)

	def test_prune_drops_old_index_entries(self):
		ride = self._request()
		old = (timezone.now() - timedelta(minutes=10)).timestamp()
		self.redis.zadd('rides:open:geo:ts', {str(ride.id): old})
		out = StringIO()

		call_command('prune_open_rides', stdout=out)

		self.assertIn('Pruned 1', out.getvalue())
		self.assertIsNone(GeoIndex('rides:open:geo').position(ride.id))


class AcceptTests(RideLifecycleTestMixin, TestCase):
	def test_exactly_one_of_two_drivers_wins(self):
		self.presence.ping(DRIVER_A.id, *NEAR)
		self.presence.ping(DRIVER_B.id, *NEAR)
		ride = self._request()

		for _ in (DRIVER_A, DRIVER_B):
			self.assertEqual(
				[r.id for r in self.lifecycle.find_nearby_open_rides(*NEAR, radius_meters=5000)],
				[ride.id],
			)

		result = self.lifecycle.accept(DRIVER_A, ride.id)
		with self.assertRaises(RideNotAvailableError):
			self.lifecycle.accept(DRIVER_B, ride.id)

		self.assertTrue(result.success)
		ride.refresh_from_db()
		self.assertEqual(ride.status, Ride.STATUS_ACCEPTED)
		self.assertEqual(ride.driver_id, DRIVER_A.id)
		self.assertIsNotNone(ride.accepted_at)
		self.assertEqual(self.lifecycle.find_nearby_open_rides(*NEAR, radius_meters=5000), [])
		self.assertIsNone(GeoIndex('rides:open:geo').position(ride.id))

	def test_losing_accept_is_a_conflict(self):
		ride = self._request()
		self.lifecycle.accept(DRIVER_A, ride.id)

		with self.assertRaises(ConflictError):
			self.lifecycle.accept(DRIVER_B, ride.id)

	def test_retry_by_winner_is_idempotent(self):
		ride = self._request()
		self.lifecycle.accept(DRIVER_A, ride.id)

		result = self.lifecycle.accept(DRIVER_A, ride.id)

		self.assertTrue(result.success)
		self.assertTrue(result.already_applied)

	def test_accept_pending_ride(self):
		ride = self._request()
		Ride.objects.filter(id=ride.id).update(status=Ride.STATUS_PENDING)

		self.assertEqual(self.lifecycle.accept(DRIVER_A, ride.id).ride.status, Ride.STATUS_ACCEPTED)

	def test_accept_missing_ride(self):
		with self.assertRaises(RideNotFoundError):
			self.lifecycle.accept(DRIVER_A, 9999)

	def test_accept_cancelled_ride(self):
		ride = self._request()
		self.lifecycle.cancel(CUSTOMER, ride.id)

		with self.assertRaises(RideNotAvailableError):
			self.lifecycle.accept(DRIVER_A, ride.id)

	def test_customer_cannot_accept(self):
		ride = self._request()

		with self.assertRaises(Forbidden):
			self.lifecycle.accept(CUSTOMER, ride.id)

	def test_index_failure_after_accept_is_not_fatal(self):
		ride = self._request()

		with patch.object(GeoIndex, 'remove', side_effect=TransientStoreError('down')):
			result = self.lifecycle.accept(DRIVER_A, ride.id)

		self.assertTrue(result.success)
		self.assertEqual(self.lifecycle.find_nearby_open_rides(*PICKUP, radius_meters=5000), [])


class TransitionTests(RideLifecycleTestMixin, TestCase):
	def test_start_requested_ride_is_a_conflict(self):
		ride = self._request()

		with self.assertRaises(InvalidTransitionError):
			self.lifecycle.start(DRIVER_A, ride.id)

		ride.refresh_from_db()
		self.assertEqual(ride.status, Ride.STATUS_REQUESTED)

	def test_full_lifecycle_sets_timestamps(self):
		ride = self._request()
		self.lifecycle.accept(DRIVER_A, ride.id)

		started = self.lifecycle.start(DRIVER_A, ride.id).ride
		self.assertEqual(started.status, Ride.STATUS_STARTED)
		self.assertIsNotNone(started.started_at)
		self.assertGreaterEqual(started.started_at, started.accepted_at)

		completed = self.lifecycle.complete(DRIVER_A, ride.id).ride
		self.assertEqual(completed.status, Ride.STATUS_COMPLETED)
		self.assertGreaterEqual(completed.completed_at, completed.started_at)
		self.assertEqual(completed.driver_id, DRIVER_A.id)

	def test_complete_accepted_ride_is_a_conflict(self):
		ride = self._request()
		self.lifecycle.accept(DRIVER_A, ride.id)

		with self.assertRaises(InvalidTransitionError):
			self.lifecycle.complete(DRIVER_A, ride.id)

	def test_other_driver_cannot_start(self):
		ride = self._request()
		self.lifecycle.accept(DRIVER_A, ride.id)

		with self.assertRaises(Forbidden):
			self.lifecycle.start(DRIVER_B, ride.id)

	def test_start_and_complete_retries_are_idempotent(self):
		ride = self._request()
		self.lifecycle.accept(DRIVER_A, ride.id)
		self.lifecycle.start(DRIVER_A, ride.id)

		self.assertTrue(self.lifecycle.start(DRIVER_A, ride.id).already_applied)
		self.lifecycle.complete(DRIVER_A, ride.id)
		self.assertTrue(self.lifecycle.complete(DRIVER_A, ride.id).already_applied)

	def test_completed_ride_cannot_be_cancelled(self):
		ride = self._request()
		self.lifecycle.accept(DRIVER_A, ride.id)
		self.lifecycle.start(DRIVER_A, ride.id)
		self.lifecycle.complete(DRIVER_A, ride.id)

		with self.assertRaises(InvalidTransitionError):
			self.lifecycle.cancel(CUSTOMER, ride.id)

	def test_driver_is_set_exactly_while_assigned(self):
		ride = self._request()
		self.assertIsNone(Ride.objects.get(id=ride.id).driver_id)

		for step in (self.lifecycle.accept, self.lifecycle.start, self.lifecycle.complete):
			step(DRIVER_A, ride.id)
			self.assertEqual(Ride.objects.get(id=ride.id).driver_id, DRIVER_A.id)

		cancelled = self._request()
		self.lifecycle.accept(DRIVER_A, cancelled.id)
		self.lifecycle.cancel(CUSTOMER, cancelled.id)
		cancelled.refresh_from_db()
		self.assertIsNone(cancelled.driver_id)
		self.assertEqual(cancelled.cancelled_driver_id, DRIVER_A.id)


class CancelTests(RideLifecycleTestMixin, TestCase):
	def test_customer_cancels_open_ride(self):
		ride = self._request()

		result = self.lifecycle.cancel(CUSTOMER, ride.id, reason='Changed plans')

		self.assertEqual(result.ride.status, Ride.STATUS_CANCELLED)
		self.assertEqual(result.ride.cancellation_reason, 'Changed plans')
		self.assertIsNotNone(result.ride.cancelled_at)
		self.assertEqual(self.lifecycle.find_nearby_open_rides(*PICKUP, radius_meters=5000), [])

	def test_cancel_twice_is_idempotent(self):
		ride = self._request()
		self.lifecycle.cancel(CUSTOMER, ride.id)

		self.assertTrue(self.lifecycle.cancel(CUSTOMER, ride.id).already_applied)

	def test_other_customer_cannot_cancel(self):
		ride = self._request()

		with self.assertRaises(Forbidden):
			self.lifecycle.cancel(OTHER_CUSTOMER, ride.id)
		self.assertEqual(Ride.objects.get(id=ride.id).status, Ride.STATUS_REQUESTED)

	def test_assigned_driver_can_cancel(self):
		ride = self._request()
		self.lifecycle.accept(DRIVER_A, ride.id)

		result = self.lifecycle.cancel(DRIVER_A, ride.id)

		self.assertEqual(result.ride.status, Ride.STATUS_CANCELLED)
		self.assertTrue(self.lifecycle.cancel(DRIVER_A, ride.id).already_applied)

	def test_unassigned_driver_cannot_cancel(self):
		ride = self._request()

		with self.assertRaises(Forbidden):
			self.lifecycle.cancel(DRIVER_A, ride.id)

	def test_cancel_missing_ride(self):
		with self.assertRaises(RideNotFoundError):
			self.lifecycle.cancel(CUSTOMER, 9999)


class RideStatusTests(RideLifecycleTestMixin, TestCase):
	def test_status_without_driver(self):
		ride = self._request()

		view = self.lifecycle.get_status(CUSTOMER, ride.id)

		self.assertEqual(view.ride.id, ride.id)
		self.assertIsNone(view.driver_location)
		self.assertIsNone(view.driver_distance_to_pickup_m)

	def test_status_includes_live_driver_location(self):
		self.presence.ping(DRIVER_A.id, *NEAR)
		ride = self._request()
		self.lifecycle.accept(DRIVER_A, ride.id)

		view = self.lifecycle.get_status(CUSTOMER, ride.id)

		self.assertEqual(view.driver_location.driver_id, DRIVER_A.id)
		self.assertLess(view.driver_distance_to_pickup_m, 100)
		self.assertEqual(self.lifecycle.get_status(DRIVER_A, ride.id).ride.id, ride.id)

	def test_status_survives_presence_outage(self):
		ride = self._request()
		self.lifecycle.accept(DRIVER_A, ride.id)

		with patch.object(PresenceTracker, 'get_location', side_effect=TransientStoreError('down')):
			view = self.lifecycle.get_status(CUSTOMER, ride.id)

		self.assertIsNone(view.driver_location)

	def test_customer_sees_driver_details_and_driver_sees_customer(self):
		Account.objects.create(id=CUSTOMER.id, role='customer', phone_number='01700000001', name='Karim')
		Account.objects.create(
			id=DRIVER_A.id, role='driver', phone_number='01800000101', name='Rahim', vehicle_number='DHA-1234'
		)
		ride = self._request()
		self.lifecycle.accept(DRIVER_A, ride.id)

		customer_view = self.lifecycle.get_status(CUSTOMER, ride.id)
		self.assertEqual(customer_view.driver_account.vehicle_number, 'DHA-1234')
		self.assertEqual(customer_view.driver_account.phone_number, '01800000101')
		self.assertIsNone(customer_view.customer_account)

		driver_view = self.lifecycle.get_status(DRIVER_A, ride.id)
		self.assertEqual(driver_view.customer_account.name, 'Karim')
		self.assertIsNone(driver_view.driver_account)

	def test_missing_driver_account_leaves_details_out(self):
		ride = self._request()
		self.lifecycle.accept(DRIVER_A, ride.id)

		self.assertIsNone(self.lifecycle.get_status(CUSTOMER, ride.id).driver_account)

	def test_driver_who_cancelled_can_still_read_status(self):
		ride = self._request()
		self.lifecycle.accept(DRIVER_A, ride.id)
		self.lifecycle.cancel(DRIVER_A, ride.id)

		view = self.lifecycle.get_status(DRIVER_A, ride.id)

		self.assertEqual(view.ride.status, Ride.STATUS_CANCELLED)
		self.assertIn(ride.id, [r.id for r in self.lifecycle.ride_history(DRIVER_A)])
		with self.assertRaises(Forbidden):
			self.lifecycle.get_status(DRIVER_B, ride.id)

	def test_status_is_private(self):
		ride = self._request()

		with self.assertRaises(Forbidden):
			self.lifecycle.get_status(OTHER_CUSTOMER, ride.id)
		with self.assertRaises(Forbidden):
			self.lifecycle.get_status(DRIVER_B, ride.id)

	def test_status_missing_ride(self):
		with self.assertRaises(RideNotFoundError):
			self.lifecycle.get_status(CUSTOMER, 9999)

	def test_current_ride_and_history(self):
		first = self._request()
		self.lifecycle.cancel(CUSTOMER, first.id)
		second = self._request()
		self.lifecycle.accept(DRIVER_A, second.id)

		self.assertEqual(self.lifecycle.current_ride_for_customer(CUSTOMER).id, second.id)
		self.assertEqual(self.lifecycle.current_ride_for_driver(DRIVER_A).id, second.id)
		self.assertIsNone(self.lifecycle.current_ride_for_driver(DRIVER_B))
		self.assertEqual(
			[r.id for r in self.lifecycle.ride_history(CUSTOMER)],
			[second.id, first.id],
		)
		self.assertEqual([r.id for r in self.lifecycle.ride_history(DRIVER_A)], [second.id])


class ConcurrentAcceptTests(FakeRedisMixin, TransactionTestCase):
	"""Real threads racing on one database row."""

	def test_only_one_of_many_concurrent_accepts_wins(self):
		lifecycle = RideLifecycle()
		ride = lifecycle.request_ride(CUSTOMER, PICKUP, DROPOFF).ride
		drivers = [Principal(id=200 + n, role='driver') for n in range(8)]
		barrier = threading.Barrier(len(drivers))

		def attempt(driver):
			try:
				barrier.wait()
				lifecycle.accept(driver, ride.id)
				return driver.id
			except RideNotAvailableError:
				return None
			finally:
				connection.close()

		with ThreadPoolExecutor(max_workers=len(drivers)) as pool:
			outcomes = list(pool.map(attempt, drivers))

		winners = [driver_id for driver_id in outcomes if driver_id is not None]
		self.assertEqual(len(winners), 1)
		ride.refresh_from_db()
		self.assertEqual(ride.status, Ride.STATUS_ACCEPTED)
		self.assertEqual(ride.driver_id, winners[0])


class RideAPITests(FakeRedisMixin, TestCase):
	def setUp(self):
		super().setUp()
		registry = SessionRegistry()
		self.customer = APIClient()
		self.customer.credentials(HTTP_AUTHORIZATION='Bearer %s' % registry.issue(CUSTOMER.id, 'customer'))
		self.driver_a = APIClient()
		self.driver_a.credentials(HTTP_AUTHORIZATION='Bearer %s' % registry.issue(DRIVER_A.id, 'driver'))
		self.driver_b = APIClient()
		self.driver_b.credentials(HTTP_AUTHORIZATION='Bearer %s' % registry.issue(DRIVER_B.id, 'driver'))

	def _create_ride(self):
		response = self.customer.post('/api/rides/request/', {
			'pickup_latitude': PICKUP[0],
			'pickup_longitude': PICKUP[1],
			'dropoff_latitude': DROPOFF[0],
			'dropoff_longitude': DROPOFF[1],
		}, format='json')
		self.assertEqual(response.status_code, 201)
		return response.data['ride']['id']

	def test_ride_flow(self):
		ride_id = self._create_ride()

		response = self.driver_a.post('/api/driver/nearby-rides/', {
			'latitude': NEAR[0], 'longitude': NEAR[1], 'radius': 5000,
		}, format='json')
		self.assertEqual(response.status_code, 200)
		self.assertEqual([r['id'] for r in response.data['rides']], [ride_id])
		self.assertIn('distance_m', response.data['rides'][0])

		self.assertEqual(self.driver_a.post('/api/rides/%d/accept/' % ride_id).status_code, 200)
		response = self.driver_b.post('/api/rides/%d/accept/' % ride_id)
		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['code'], 'ride_not_available')
		self.assertIn('not in requested or pending status', response.data['error'])

		self.assertEqual(self.driver_a.post('/api/rides/%d/start/' % ride_id).status_code, 200)
		response = self.driver_a.post('/api/rides/%d/complete/' % ride_id)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['ride']['status'], 'completed')
		self.assertNotIn('distance_m', response.data['ride'])

	def test_start_before_accept_is_409(self):
		ride_id = self._create_ride()

		response = self.driver_a.post('/api/rides/%d/start/' % ride_id)

		self.assertEqual(response.status_code, 409)

	def test_status_and_current_ride_for_customer(self):
		Account.objects.create(
			id=DRIVER_A.id, role='driver', phone_number='01800000101', name='Rahim', vehicle_number='DHA-1234'
		)
		ride_id = self._create_ride()
		self.driver_a.post('/api/driver/location/', {'latitude': NEAR[0], 'longitude': NEAR[1]}, format='json')
		self.driver_a.post('/api/rides/%d/accept/' % ride_id)

		response = self.customer.get('/api/rides/%d/status/' % ride_id)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['ride']['status'], 'accepted')
		self.assertEqual(response.data['driver']['driver_id'], DRIVER_A.id)
		self.assertEqual(response.data['driver_info']['vehicle_number'], 'DHA-1234')
		self.assertIsNone(response.data['customer_info'])

		response = self.customer.get('/api/rides/current/')
		self.assertTrue(response.data['has_active_ride'])
		self.assertEqual(response.data['ride']['id'], ride_id)

	def test_driver_current_ride_includes_customer_contact(self):
		Account.objects.create(id=CUSTOMER.id, role='customer', phone_number='01700000001', name='Karim')
		ride_id = self._create_ride()
		self.driver_a.post('/api/rides/%d/accept/' % ride_id)

		response = self.driver_a.get('/api/driver/current-ride/')

		self.assertEqual(response.status_code, 200)
		self.assertTrue(response.data['has_active_ride'])
		self.assertEqual(response.data['ride']['id'], ride_id)
		self.assertEqual(response.data['customer_info']['name'], 'Karim')
		self.assertEqual(response.data['customer_info']['phone_number'], '01700000001')

	def test_status_of_others_ride_is_403(self):
		ride_id = self._create_ride()

		self.assertEqual(self.driver_b.get('/api/rides/%d/status/' % ride_id).status_code, 403)
		self.assertEqual(self.customer.get('/api/rides/9999/status/').status_code, 404)

	def test_nearby_drivers_for_customer(self):
		self.driver_a.post('/api/driver/location/', {'latitude': NEAR[0], 'longitude': NEAR[1]}, format='json')

		response = self.customer.post('/api/rides/nearby-drivers/', {
			'latitude': PICKUP[0], 'longitude': PICKUP[1],
		}, format='json')

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['count'], 1)
		self.assertEqual(response.data['drivers'][0]['driver_id'], DRIVER_A.id)

	def test_cancel_and_history(self):
		ride_id = self._create_ride()

		response = self.customer.post('/api/rides/%d/cancel/' % ride_id, {'reason': 'Too slow'}, format='json')
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['ride']['status'], 'cancelled')

		response = self.customer.get('/api/rides/history/')
		self.assertEqual(response.data['count'], 1)
		self.assertEqual(self.customer.get('/api/rides/history/?limit=x').status_code, 400)

	def test_driver_cannot_request_ride(self):
		response = self.driver_a.post('/api/rides/request/', {
			'pickup_latitude': PICKUP[0],
			'pickup_longitude': PICKUP[1],
			'dropoff_latitude': DROPOFF[0],
			'dropoff_longitude': DROPOFF[1],
		}, format='json')

		self.assertEqual(response.status_code, 403)


class HealthCheckTests(FakeRedisMixin, TestCase):
	def test_health_check(self):
		response = APIClient().get('/health/')

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['services'], {'database': 'healthy', 'redis': 'healthy'})
