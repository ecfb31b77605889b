"""Health endpoint for load balancers and smoke tests.

The database is the only hard dependency: the service answers 503 without
it. The notification channel is reported but never fails the check, since
notifications are best-effort.
"""

from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders.providers import get_notification_channel


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        db_ok = False

    channel = get_notification_channel()
    return JsonResponse(
        {
            "ok": db_ok,
            "components": {
                "db": {"ok": db_ok},
                "notifications": {"configured": bool(getattr(channel, "configured", False))},
            },
        },
        status=200 if db_ok else 503,
    )
