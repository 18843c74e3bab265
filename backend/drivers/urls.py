from django.urls import path
from .views import (
    DriverLocationUpdateView,
    DriverOfflineView,
    DriverStatusView,
    NearbyRidesForDriverView,
    DriverCurrentRideView,
)

urlpatterns = [
    path("location/", DriverLocationUpdateView.as_view(), name="driver-location"),
    path("offline/", DriverOfflineView.as_view(), name="driver-offline"),
    path("status/", DriverStatusView.as_view(), name="driver-status"),
    path("nearby-rides/", NearbyRidesForDriverView.as_view(), name="driver-nearby-rides"),
    path("current-ride/", DriverCurrentRideView.as_view(), name="driver-current-ride"),
]
