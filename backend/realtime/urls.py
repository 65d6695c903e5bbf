from django.urls import path

from .views import ingest_change

app_name = "realtime"

urlpatterns = [
    path("changes/", ingest_change, name="ingest-change"),
]
