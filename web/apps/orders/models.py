import uuid
from django.db import models, transaction


class OrderModel(models.Model):
    # UUID PK exposed in the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Internal incremental counter, tie-breaker for created_at ordering
    internal_id = models.BigIntegerField(unique=True, editable=False, null=True)

    class Status(models.TextChoices):
        PENDING = "pending"
        READY = "ready"
        DELIVERED = "delivered"

    customer_name = models.CharField(max_length=120)
    customer_email = models.EmailField()
    customer_phone = models.CharField(max_length=32, blank=True, default="")
    delivery_address = models.TextField(blank=True, default="")
    delivery_date = models.DateField()
    store_id = models.CharField(max_length=64)
    # Line item snapshot taken at checkout: [{product_id, unit_price, quantity}]
    items = models.JSONField(default=list)
    total = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "orders"
        ordering = ["created_at", "internal_id"]
        indexes = [
            models.Index(fields=["status", "delivery_date", "store_id"], name="orders_batch_idx"),
        ]

    def save(self, *args, **kwargs):
        # Assign incremental `internal_id` only on creation
        if self.internal_id is None:
            with transaction.atomic():
                last = (
                    OrderModel.objects.select_for_update()
                    .exclude(internal_id=None)
                    .order_by("-internal_id")
                    .first()
                )
                self.internal_id = 1 if not last else last.internal_id + 1
                super().save(*args, **kwargs)
            return

        super().save(*args, **kwargs)


class StoreModel(models.Model):
    """Delivery origin referenced by ``OrderModel.store_id``."""

    id = models.CharField(primary_key=True, max_length=64)
    name = models.CharField(max_length=120)
    location = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        db_table = "stores"


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=200, unique=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.IntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
