from rest_framework import serializers

from accounts.serializers import AccountContactSerializer
from drivers.serializers import DriverLocationSerializer
from .models import Ride


class RideSerializer(serializers.ModelSerializer):
    """Serializer for Rides"""
    pickup_latitude = serializers.FloatField()
    pickup_longitude = serializers.FloatField()
    dropoff_latitude = serializers.FloatField()
    dropoff_longitude = serializers.FloatField()
    fare = serializers.FloatField(allow_null=True)
    # Only present on nearby-ride search results; skipped otherwise
    distance_m = serializers.FloatField(read_only=True)

    class Meta:
        model = Ride
        fields = ['id', 'customer_id', 'driver_id', 'pickup_latitude', 'pickup_longitude',
                  'dropoff_latitude', 'dropoff_longitude', 'status', 'fare',
                  'requested_at', 'accepted_at', 'started_at', 'completed_at',
                  'cancelled_at', 'cancellation_reason', 'distance_m']
        read_only_fields = fields


class RideRequestCreateSerializer(serializers.Serializer):
    """Serializer for creating ride requests"""
    pickup_latitude = serializers.FloatField(min_value=-90, max_value=90)
    pickup_longitude = serializers.FloatField(min_value=-180, max_value=180)
    dropoff_latitude = serializers.FloatField(min_value=-90, max_value=90)
    dropoff_longitude = serializers.FloatField(min_value=-180, max_value=180)


class RideCancelSerializer(serializers.Serializer):
    """Serializer for ride cancellation"""
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)


class RideStatusSerializer(serializers.Serializer):
    """A RideView: the ride plus the other party's details."""
    ride = RideSerializer()
    driver = DriverLocationSerializer(source='driver_location', allow_null=True)
    driver_info = AccountContactSerializer(source='driver_account', allow_null=True)
    customer_info = AccountContactSerializer(source='customer_account', allow_null=True)
    driver_distance_to_pickup_m = serializers.FloatField(allow_null=True)
