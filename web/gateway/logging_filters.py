"""Logging filter adding the current request id to every record.

Configured on the JSON handler in ``config.settings.LOGGING`` so order,
batch and notification log lines can be correlated per request.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Set ``record.request_id`` ("-" outside a request) and keep the record."""

    def filter(self, record: LogRecord) -> bool:
        record.request_id = REQUEST_ID_CTX.get()
        return True
