from shared.middleware.request_id import (
    RequestIdFilter,
    request_id_middleware,
)
from shared.middleware.error_handler import (
    error_envelope_middleware,
    http_error_envelope_handler,
)

__all__ = [
    "RequestIdFilter",
    "request_id_middleware",
    "error_envelope_middleware",
    "http_error_envelope_handler",
]
