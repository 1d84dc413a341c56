from __future__ import annotations

from collections.abc import Mapping

from django.http import HttpRequest, HttpResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.throttling import UserRateThrottle
from rest_framework.views import APIView

from pkgsync.models import ExceptionOrder, PackageOtaProduct, PackageProduct
from pkgsync.serializers import (
    ExceptionOrderSerializer,
    ExceptionResolveSerializer,
    ProductSyncSerializer,
    RouteLookupSerializer,
    RoutedOrderSerializer,
)
from pkgsync.services.errors import FormatError, NotFoundError, StateError
from pkgsync.services.orders import resolve, start_handling
from pkgsync.services.router import route
from pkgsync.tasks import sync_product_prices_to_ota


class OrderRouteThrottle(UserRateThrottle):
    scope = "order_route"


def compact_validation_errors(detail):  # noqa: ANN001, ANN201
    if isinstance(detail, list):
        if len(detail) == 1:
            return compact_validation_errors(detail[0])
        return [compact_validation_errors(item) for item in detail]
    if isinstance(detail, Mapping):
        return {str(key): compact_validation_errors(value) for key, value in detail.items()}
    return str(detail)


def _validation_response(errors) -> Response:  # noqa: ANN001
    return Response(
        {"detail": "validation_error", "errors": compact_validation_errors(errors)},
        status=status.HTTP_400_BAD_REQUEST,
    )


def _error_response(detail: str, exc: Exception, http_status: int) -> Response:
    return Response({"detail": detail, "message": str(exc)}, status=http_status)


@require_GET
def healthz(_request: HttpRequest) -> HttpResponse:
    return HttpResponse("ok", content_type="text/plain")


class RouteLookupAPIView(APIView):
    permission_classes = [permissions.IsAuthenticated]
    throttle_classes = [OrderRouteThrottle]

    def get(self, request):  # noqa: ANN001, ANN201
        serializer = RouteLookupSerializer(data=request.query_params)
        if not serializer.is_valid():
            return _validation_response(serializer.errors)
        try:
            routed = route(serializer.validated_data["code"], serializer.validated_data["date"])
        except FormatError as exc:
            return _error_response("invalid_code", exc, status.HTTP_400_BAD_REQUEST)
        except NotFoundError as exc:
            return _error_response("not_found", exc, status.HTTP_404_NOT_FOUND)
        return Response(RoutedOrderSerializer(routed).data)


class ProductSyncAPIView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, product_id):  # noqa: ANN001, ANN201
        product = get_object_or_404(PackageProduct, pk=product_id)
        serializer = ProductSyncSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_response(serializer.errors)
        platform = serializer.validated_data["platform"]
        PackageOtaProduct.objects.get_or_create(product=product, platform=platform)
        task = sync_product_prices_to_ota.delay(product.pk, platform)
        return Response(
            {
                "product_id": product.pk,
                "platform": platform,
                "task_id": task.id,
                "message": "OTA price sync queued.",
            },
            status=status.HTTP_202_ACCEPTED,
        )


class ExceptionStartAPIView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, exception_id):  # noqa: ANN001, ANN201
        exception = get_object_or_404(ExceptionOrder, pk=exception_id)
        try:
            exception = start_handling(exception, handler=request.user)
        except StateError as exc:
            return _error_response("invalid_state", exc, status.HTTP_409_CONFLICT)
        return Response(ExceptionOrderSerializer(exception).data)


class ExceptionResolveAPIView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, exception_id):  # noqa: ANN001, ANN201
        exception = get_object_or_404(ExceptionOrder, pk=exception_id)
        serializer = ExceptionResolveSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_response(serializer.errors)
        try:
            exception = resolve(exception, remark=serializer.validated_data["remark"])
        except StateError as exc:
            return _error_response("invalid_state", exc, status.HTTP_409_CONFLICT)
        return Response(ExceptionOrderSerializer(exception).data)
