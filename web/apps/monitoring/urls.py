from django.urls import path

from . import api

app_name = "monitoring"

urlpatterns = [
    path("health/", api.health_view, name="health"),
]
