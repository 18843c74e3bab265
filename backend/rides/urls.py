from django.urls import path
from . import views

app_name = 'rides'

urlpatterns = [
    # Customer APIs
    path('request/', views.create_ride_request, name='create-ride'),
    path('current/', views.get_current_ride, name='current-ride'),
    path('nearby-drivers/', views.nearby_drivers, name='nearby-drivers'),

    # Shared
    path('history/', views.ride_history, name='ride-history'),
    path('<int:ride_id>/status/', views.ride_status, name='ride-status'),
    path('<int:ride_id>/cancel/', views.cancel_ride, name='cancel-ride'),

    # Driver Ride Actions
    path('<int:ride_id>/accept/', views.accept_ride, name='accept-ride'),
    path('<int:ride_id>/start/', views.start_ride, name='start-ride'),
    path('<int:ride_id>/complete/', views.complete_ride, name='complete-ride'),
]
