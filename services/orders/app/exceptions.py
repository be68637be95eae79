"""
Orders service — domain-specific HTTP exceptions.

All exceptions use preset status codes and detail messages so that callers
never need to specify these at the call site. The error_envelope_middleware
in shared catches these and wraps them in the standard error envelope.
"""
from fastapi import HTTPException, status


# ── Orders ───────────────────────────────────────────────────────────────────

class InvalidOrderRequest(HTTPException):
    code = "invalid_order_request"

    def __init__(self, message: str) -> None:
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=message,
        )


class OrderCreationUnavailable(HTTPException):
    code = "order_creation_failed"

    def __init__(self, retry_after_seconds: int = 1) -> None:
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="The order could not be created right now. Retry with the same idempotency key.",
            headers={"Retry-After": str(retry_after_seconds)},
        )


class OrderNotFound(HTTPException):
    code = "order_not_found"

    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found.",
        )
