from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Stamp ``record.request_id`` from the current request context.

    Outside a request (management commands, startup) the id is ``"-"`` so
    formatters can always reference ``%(request_id)s``.
    """

    def filter(self, record: LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = REQUEST_ID_CTX.get()
        return True
