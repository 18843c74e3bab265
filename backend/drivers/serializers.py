from rest_framework import serializers
from drivers.models import DriverPresence


class DriverPresenceSerializer(serializers.ModelSerializer):
    """Presence row as returned to the driver after a ping."""
    latitude = serializers.FloatField()
    longitude = serializers.FloatField()

    class Meta:
        model = DriverPresence
        fields = [
            "driver_id",
            "is_online",
            "latitude",
            "longitude",
            "last_ping_at",
            "went_online_at",
        ]
        read_only_fields = fields


class LocationUpdateSerializer(serializers.Serializer):
    """
    Serializer for a driver GPS ping.
    """
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)


class NearbySearchSerializer(LocationUpdateSerializer):
    """
    A point plus search radius (meters) and result limit.
    """
    radius = serializers.FloatField(required=False, default=5000)
    limit = serializers.IntegerField(required=False, default=None, allow_null=True)

    def validate_radius(self, value):
        if value <= 0:
            raise serializers.ValidationError("radius must be greater than 0")
        return value


class DriverLocationSerializer(serializers.Serializer):
    """Lite driver position (nearby-driver lists, ride status)."""
    driver_id = serializers.IntegerField()
    latitude = serializers.FloatField()
    longitude = serializers.FloatField()
    last_ping_at = serializers.DateTimeField(allow_null=True, required=False)
    distance_meters = serializers.FloatField(allow_null=True, required=False)
