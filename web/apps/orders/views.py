"""HTTP views for the orders app.

This module contains DRF API views for the checkout, operator and driver
surfaces. Views are kept intentionally small: they validate requests (via
Pydantic), map them to domain calls on the ``OrderLifecycleService``
returned by ``providers.get_lifecycle_service()``, and translate domain
errors into HTTP responses.

Batch release and delivery completion answer 200 once the status change is
committed, whatever happened to the notifications; the body reports how
many were sent or failed.
"""
from datetime import date

from django.db import DatabaseError, transaction
from django.utils import timezone
from pydantic import ValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .domain import (
    BatchKey,
    BatchNotEligible,
    LineItem,
    Order,
    OrderDomainError,
    OrderNotFound,
    StateConflict,
    StoreUnavailable,
)
from .idempotency import RECOVER, REPLAY, IdempotencyConflict, IdempotencyInProgress, attach, claim, remember
from .repository import stores_by_id
from .schemas import BatchReadDTO, CreateOrderDTO, OrderReadDTO, ReleaseBatchDTO


def _error_response(err: Exception) -> Response:
    """Map a domain or store error onto an HTTP response."""
    if isinstance(err, StoreUnavailable):
        return Response({"detail": err.code}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
    if isinstance(err, StateConflict):
        return Response({"detail": err.code, "stale_ids": err.stale_ids}, status=status.HTTP_409_CONFLICT)
    if isinstance(err, OrderNotFound):
        return Response({"detail": err.code}, status=status.HTTP_404_NOT_FOUND)
    if isinstance(err, BatchNotEligible):
        return Response(
            {"detail": err.code, "remaining": str(err.remaining)},
            status=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )
    return Response({"detail": str(err)}, status=status.HTTP_400_BAD_REQUEST)


DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _replayed(body, status_code) -> Response:
    resp = Response(body, status=status_code)
    resp["Idempotent-Replay"] = "true"
    return resp


def _order_body(order, store=None) -> dict:
    return OrderReadDTO.from_order(order, store=store).model_dump(mode="json")


class OrdersPingView(APIView):
    """Simple health-check endpoint for the orders module."""

    def get(self, request):
        return Response({"ok": True})


class OrdersCollectionView(APIView):
    """List orders and create checkout orders.

    ``POST`` supports idempotency via the ``Idempotency-Key`` header: the
    first request is processed and its response stored; retries with the
    same key and identical payload replay it (``Idempotent-Replay: true``),
    a retry while the first request is still running and reusing the key
    with a different payload both return HTTP 409.
    """
    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        try:
            page_size = int(request.GET.get("page_size", DEFAULT_PAGE_SIZE))
        except ValueError:
            page_size = 0
        if page_size < 1:
            return Response({"detail": "INVALID_PAGE_SIZE"}, status=status.HTTP_400_BAD_REQUEST)
        page_size = min(page_size, MAX_PAGE_SIZE)

        try:
            count, number, orders = providers.get_lifecycle_service().store.recent_page(
                request.GET.get("page", 1), page_size
            )
        except StoreUnavailable as e:
            return _error_response(e)
        return Response(
            {
                "count": count,
                "page": number,
                "page_size": page_size,
                "results": [_order_body(o) for o in orders],
            },
            status=200,
        )

    def post(self, request):
        """Create a new pending order.

        Returns:
            Response: One of the following responses.
            - 201 with the created order (and ``batch`` when auto release
              released its batch).
            - the stored status and body on an idempotent replay, or 201
              with the existing order when the first attempt created it but
              failed before answering (both with ``Idempotent-Replay``).
            - 409 with {detail: "IDEMPOTENCY_CONFLICT"} or
              {detail: "IDEMPOTENCY_IN_PROGRESS"}.
            - 400 for validation errors.
            - 503 with {detail: "STORE_UNAVAILABLE"}.
        """
        idem_key = request.headers.get("Idempotency-Key")

        # 1) Pydantic validation
        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except ValidationError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        order = Order.new(
            customer_name=dto.customer_name,
            customer_email=dto.customer_email,
            customer_phone=dto.customer_phone,
            delivery_address=dto.delivery_address,
            delivery_date=dto.delivery_date,
            store_id=dto.store_id,
            items=[LineItem(i.product_id, i.unit_price, i.quantity) for i in dto.items],
        )
        service = providers.get_lifecycle_service()
        rec = None

        try:
            # 2) Idempotency key and order commit together
            with transaction.atomic():
                if idem_key:
                    state, rec = claim(idem_key, request.data)
                    if state == REPLAY:
                        return _replayed(rec.response_body, rec.response_status)
                    if state == RECOVER:
                        return self._recover(service, rec)
                created = service.create_order(order)
                if rec:
                    attach(rec, created.id)

            # 3) Domain follow-up after commit
            placed = service.after_checkout(created)

            body = _order_body(placed.order)
            if placed.release is not None:
                body["batch"] = {
                    "released": True,
                    "order_ids": [o.id for o in placed.release.orders],
                    "notifications": placed.release.notifications.as_dict(),
                }
            if rec:
                remember(rec, status.HTTP_201_CREATED, body)
        except IdempotencyConflict as e:
            return Response({"detail": e.code}, status=status.HTTP_409_CONFLICT)
        except StoreUnavailable as e:
            return _error_response(e)
        except DatabaseError:
            return _error_response(StoreUnavailable())
        return Response(body, status=status.HTTP_201_CREATED)

    def _recover(self, service, rec):
        order = service.store.get(str(rec.order_id))
        if order is None:
            raise IdempotencyInProgress()
        body = _order_body(order)
        remember(rec, status.HTTP_201_CREATED, body)
        return _replayed(body, status.HTTP_201_CREATED)


class RetrieveOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        try:
            order = providers.get_lifecycle_service().store.get(str(oid))
        except StoreUnavailable as e:
            return _error_response(e)
        if order is None:
            return _error_response(OrderNotFound())
        return Response(_order_body(order), status=200)


class DeliverOrderView(APIView):
    """Driver confirms drop-off of a single ready order."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_transition"

    def post(self, request, oid):
        try:
            result = providers.get_lifecycle_service().complete_delivery(str(oid))
        except (OrderDomainError, StoreUnavailable) as e:
            return _error_response(e)

        body = _order_body(result.order)
        if result.notifications is not None:
            body["notifications"] = result.notifications.as_dict()
        return Response(body, status=200)


class BatchesView(APIView):
    """Operator-facing view of pending batches and their release status."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_list"

    def get(self, request):
        try:
            views = providers.get_batch_board().snapshot()
        except StoreUnavailable as e:
            return _error_response(e)
        return Response({"results": [BatchReadDTO.from_view(v).model_dump(mode="json") for v in views]})


class BatchReleaseView(APIView):
    """Release a batch: every captured order moves from pending to ready."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_transition"

    def post(self, request):
        try:
            dto = ReleaseBatchDTO.model_validate(request.data)
        except ValidationError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        key = BatchKey(dto.delivery_date, dto.store_id)
        try:
            result = providers.get_lifecycle_service().release_batch(dto.order_ids, key=key)
        except (OrderDomainError, StoreUnavailable) as e:
            return _error_response(e)

        return Response(
            {
                "delivery_date": result.key.delivery_date.isoformat(),
                "store_id": result.key.store_id,
                "orders": [_order_body(o) for o in result.orders],
                "notifications": result.notifications.as_dict(),
            },
            status=200,
        )


class DriverDeliveriesView(APIView):
    """Orders ready for delivery on a day (today by default)."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_list"

    def get(self, request):
        raw = request.GET.get("date")
        try:
            day = date.fromisoformat(raw) if raw else timezone.localdate()
        except ValueError:
            return Response({"detail": "INVALID_DATE"}, status=status.HTTP_400_BAD_REQUEST)

        try:
            orders = providers.get_lifecycle_service().deliveries_for(day)
            stores = stores_by_id({o.store_id for o in orders})
        except StoreUnavailable as e:
            return _error_response(e)

        return Response(
            {
                "date": day.isoformat(),
                "results": [_order_body(o, store=stores.get(o.store_id)) for o in orders],
            }
        )
