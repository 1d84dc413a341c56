from django.urls import path

from pkgsync import api_views

app_name = "pkgsync-api"

urlpatterns = [
    path("route", api_views.RouteLookupAPIView.as_view(), name="route-lookup"),
    path("products/<int:product_id>/sync", api_views.ProductSyncAPIView.as_view(), name="product-sync"),
    path("exceptions/<int:exception_id>/start", api_views.ExceptionStartAPIView.as_view(), name="exception-start"),
    path("exceptions/<int:exception_id>/resolve", api_views.ExceptionResolveAPIView.as_view(), name="exception-resolve"),
]
