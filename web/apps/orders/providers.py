"""Service provider helpers for wiring the lifecycle service with ports.

``get_lifecycle_service`` returns an ``OrderLifecycleService`` backed by the
Django order store. The notification channel is the HTTP client for the
notifications service when ``settings.USE_HTTP_ADAPTERS`` is truthy and
``settings.NOTIFICATIONS_BASE_URL`` is set; otherwise a null channel is
used and every fan-out is skipped.

``get_batch_board`` returns the process-wide ``BatchBoard`` behind the
operator batch view. It is rebuilt when the release threshold or
``BATCH_BOARD_MAX_AGE_SECS`` changes.
"""

import threading

from django.conf import settings

from .adapters import NullNotificationChannel
from .batching import ReleasePolicy
from .domain import NotificationChannel
from .http_adapters import HttpNotificationClient
from .repository import DjangoOrderStore
from .service import BatchBoard, OrderLifecycleService


def get_notification_channel() -> NotificationChannel:
    if getattr(settings, "USE_HTTP_ADAPTERS", True) and getattr(settings, "NOTIFICATIONS_BASE_URL", ""):
        return HttpNotificationClient()
    return NullNotificationChannel()


def get_release_policy() -> ReleasePolicy:
    policy = ReleasePolicy(threshold=settings.BATCH_RELEASE_THRESHOLD)
    policy.validate()
    return policy


def get_lifecycle_service() -> OrderLifecycleService:
    """Return a configured OrderLifecycleService instance."""
    return OrderLifecycleService(
        store=DjangoOrderStore(),
        notifier=get_notification_channel(),
        policy=get_release_policy(),
        notify_timeout=getattr(settings, "NOTIFY_TIMEOUT_SECS", 5.0),
        auto_release=getattr(settings, "BATCH_AUTO_RELEASE", False),
        notify_on_delivery=getattr(settings, "NOTIFY_ON_DELIVERY", False),
    )


_board_lock = threading.Lock()
_board = None


def get_batch_board() -> BatchBoard:
    global _board
    policy = get_release_policy()
    max_age = getattr(settings, "BATCH_BOARD_MAX_AGE_SECS", 5.0)
    with _board_lock:
        if _board is None or _board.policy != policy or _board.max_age != max_age:
            if _board is not None:
                _board.close()
            _board = BatchBoard(DjangoOrderStore(), policy, max_age=max_age).open()
        return _board


def reset_batch_board() -> None:
    """Close and forget the process-wide board."""
    global _board
    with _board_lock:
        if _board is not None:
            _board.close()
        _board = None
