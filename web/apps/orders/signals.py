"""Change feed for the order store.

``order_changed`` is sent once a transaction that created or updated
orders has committed. Bulk status updates bypass ``post_save``, so the
repository sends the signal for those itself.
"""

from django.db import transaction
from django.db.models.signals import post_save
from django.dispatch import Signal, receiver

from .models import OrderModel

# kwargs: order_ids (list[str])
order_changed = Signal()


def announce(order_ids):
    ids = [str(i) for i in order_ids]
    transaction.on_commit(lambda: order_changed.send(sender=OrderModel, order_ids=ids))


@receiver(post_save, sender=OrderModel, dispatch_uid="orders.announce_saved_order")
def _order_saved(sender, instance, **kwargs):
    announce([instance.id])
