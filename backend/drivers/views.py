from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from accounts.permissions import IsDriver
from drivers.serializers import (
    DriverPresenceSerializer,
    LocationUpdateSerializer,
    NearbySearchSerializer,
)
from drivers.services import get_presence_tracker
from rides.serializers import RideSerializer, RideStatusSerializer
from services.ride_management import get_ride_lifecycle


class DriverLocationUpdateView(APIView):
    """
    POST: Driver location ping. Marks the driver online.
    """
    permission_classes = [IsAuthenticated, IsDriver]

    def post(self, request):
        serializer = LocationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        presence = get_presence_tracker().ping(
            request.user.id,
            serializer.validated_data["latitude"],
            serializer.validated_data["longitude"],
        )

        return Response({
            "message": "Location updated",
            "presence": DriverPresenceSerializer(presence).data,
        })


class DriverOfflineView(APIView):
    """
    POST: Driver goes offline; stops appearing in nearby-driver searches.
    """
    permission_classes = [IsAuthenticated, IsDriver]

    def post(self, request):
        get_presence_tracker().go_offline(request.user.id)
        return Response({"message": "You are offline", "is_online": False})


class DriverStatusView(APIView):
    """
    GET: Whether the driver currently counts as online (fresh ping).
    """
    permission_classes = [IsAuthenticated, IsDriver]

    def get(self, request):
        return Response({
            "driver_id": request.user.id,
            "is_online": get_presence_tracker().is_online(request.user.id),
        })


class NearbyRidesForDriverView(APIView):
    """
    POST: Open rides near a point. Drivers may browse before going online.
    """
    permission_classes = [IsAuthenticated, IsDriver]

    def post(self, request):
        serializer = NearbySearchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        rides = get_ride_lifecycle().find_nearby_open_rides(
            data["latitude"],
            data["longitude"],
            data["radius"],
            data["limit"],
        )
        serialized = RideSerializer(rides, many=True)

        return Response({"rides": serialized.data, "count": len(serialized.data)})


class DriverCurrentRideView(APIView):
    """
    GET: The ride the driver is on (accepted or started), if any, with the
    customer's name and phone for the pickup.
    """
    permission_classes = [IsAuthenticated, IsDriver]

    def get(self, request):
        lifecycle = get_ride_lifecycle()
        ride = lifecycle.current_ride_for_driver(request.user)
        if not ride:
            return Response({"has_active_ride": False, "message": "No active ride"})

        view = lifecycle.get_status(request.user, ride.id)
        return Response({"has_active_ride": True, **RideStatusSerializer(view).data})
