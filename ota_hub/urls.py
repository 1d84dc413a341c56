from django.urls import include, path

from pkgsync import api_views

urlpatterns = [
    path("healthz/", api_views.healthz, name="healthz"),
    path("api/pkg/", include("pkgsync.api_urls")),
]
