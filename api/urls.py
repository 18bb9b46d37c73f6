# api/urls.py

from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views

router = DefaultRouter()
router.register(r'donors', views.DonorViewSet, basename='donor')
router.register(r'blood-requests', views.BloodRequestViewSet, basename='blood-request')
router.register(r'notifications', views.NotificationViewSet, basename='notification')

app_name = 'api'

urlpatterns = [
    path('', include(router.urls)),

    path('blood-types/', views.blood_types, name='blood-types'),
    path('health/', views.health, name='health'),
]

# Available endpoints:
# GET   /api/blood-requests/                   - List requests (admin), prunes old finished ones
# POST  /api/blood-requests/                   - Submit a request, notifies compatible donors
# GET   /api/blood-requests/{id}/              - Request with its donor responses
# PUT   /api/blood-requests/{id}/status/       - Change status (admin)
# POST  /api/blood-requests/{id}/respond/      - Donor accepts or declines
# POST  /api/blood-requests/{id}/dispatch/     - Notify donors again (admin)
# POST  /api/blood-requests/prune/             - Delete old finished requests (admin)
#
# GET   /api/notifications/                    - Caller's notifications plus global ones
# POST  /api/notifications/{id}/read/          - Mark one as read
# POST  /api/notifications/read-all/           - Mark all as read
#
# GET   /api/donors/                           - List donors (admin)
# GET   /api/blood-types/                      - The eight blood groups
# GET   /api/health/                           - Liveness check
