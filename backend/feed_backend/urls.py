from django.urls import path, include

from .views import health_check

urlpatterns = [
    path("health/", health_check), # Health check endpoint

    # Row change ingress from the hosted backend (at /api/realtime/)
    path('api/realtime/', include('realtime.urls')),
]
