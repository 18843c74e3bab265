from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from accounts.permissions import IsCustomer, IsDriver
from drivers.serializers import DriverLocationSerializer, NearbySearchSerializer
from drivers.services import get_presence_tracker
from services.ride_management import clamp_limit, get_ride_lifecycle
from .serializers import (
    RideSerializer,
    RideRequestCreateSerializer,
    RideCancelSerializer,
    RideStatusSerializer,
)


def _result_response(result, status_code=status.HTTP_200_OK):
    return Response({
        'message': result.message,
        'already_applied': result.already_applied,
        'ride': RideSerializer(result.ride).data,
    }, status=status_code)


# ==================== Customer Ride APIs ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated, IsCustomer])
def create_ride_request(request):
    """Create a new ride request in `requested` status."""
    serializer = RideRequestCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    result = get_ride_lifecycle().request_ride(
        request.user,
        (data['pickup_latitude'], data['pickup_longitude']),
        (data['dropoff_latitude'], data['dropoff_longitude']),
    )
    return _result_response(result, status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsCustomer])
def get_current_ride(request):
    """
    Get customer's current non-terminal ride (POLLING ENDPOINT)

    Includes the driver's live location once a driver is assigned.
    """
    lifecycle = get_ride_lifecycle()
    ride = lifecycle.current_ride_for_customer(request.user)
    if not ride:
        return Response({'has_active_ride': False, 'message': 'No active ride found'})

    view = lifecycle.get_status(request.user, ride.id)
    return Response({
        'has_active_ride': True,
        **RideStatusSerializer(view).data,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsCustomer])
def nearby_drivers(request):
    """Online drivers near a point, nearest first."""
    serializer = NearbySearchSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    drivers = get_presence_tracker().find_nearby_drivers(
        data['latitude'],
        data['longitude'],
        data['radius'],
        clamp_limit(data['limit']),
    )
    serialized = DriverLocationSerializer(drivers, many=True)
    return Response({'drivers': serialized.data, 'count': len(serialized.data)})


# ==================== Shared Ride APIs ====================

@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_status(request, ride_id):
    """Ride plus assigned driver's latest location. Customer or assigned driver only."""
    view = get_ride_lifecycle().get_status(request.user, ride_id)
    return Response(RideStatusSerializer(view).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_ride(request, ride_id):
    """Cancel by the owning customer or the assigned driver."""
    serializer = RideCancelSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = get_ride_lifecycle().cancel(
        request.user, ride_id, serializer.validated_data.get('reason', '')
    )
    return _result_response(result)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_history(request):
    limit = request.query_params.get('limit', 20)
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        return Response({'error': 'limit must be an integer'}, status=status.HTTP_400_BAD_REQUEST)

    rides = get_ride_lifecycle().ride_history(request.user, limit)
    serialized = RideSerializer(rides, many=True)
    return Response({'rides': serialized.data, 'count': len(serialized.data)})


# ==================== Driver Ride Actions ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def accept_ride(request, ride_id):
    """
    Accept an open ride.

    Concurrent accepts on the same ride: one gets 200, the rest get 409.
    """
    result = get_ride_lifecycle().accept(request.user, ride_id)
    return _result_response(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def start_ride(request, ride_id):
    result = get_ride_lifecycle().start(request.user, ride_id)
    return _result_response(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDriver])
def complete_ride(request, ride_id):
    result = get_ride_lifecycle().complete(request.user, ride_id)
    return _result_response(result)
