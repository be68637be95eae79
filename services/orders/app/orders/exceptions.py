# Domain exceptions raised by the order service, repository and outbox.
# The controller layer catches these and converts them to HTTPException.


class InvalidArgument(ValueError):
    """Malformed caller input. Raised before any I/O; never retried."""
    pass


class OrderCreationFailed(Exception):
    """Persistence failed for a reason other than an idempotency race.

    Retryable: the caller may repeat the request with the same key.
    """

    def __init__(self, message: str = "Order could not be created") -> None:
        super().__init__(message)


class ConstraintViolation(Exception):
    """A unique constraint rejected an insert."""

    def __init__(self, constraint: str | None, message: str = "") -> None:
        self.constraint = constraint
        super().__init__(message or f"Unique constraint violated: {constraint}")


class IdempotencyKeyConflict(ConstraintViolation):
    def __init__(self, user_id: int, idempotency_key: str) -> None:
        self.user_id = user_id
        self.idempotency_key = idempotency_key
        super().__init__(
            "uq_orders_user_idempotency_key",
            f"Order already exists for user {user_id} with idempotency key {idempotency_key!r}",
        )


class OrderNumberConflict(ConstraintViolation):
    def __init__(self, order_number: str) -> None:
        self.order_number = order_number
        super().__init__(
            "uq_orders_order_number",
            f"Order number {order_number} already exists",
        )


class IdempotencyConflictResolved(Exception):
    """Internal marker: a concurrent insert won and the winner was re-read.

    Never escapes the service; it carries the existing order back to the
    create path, which returns it as a normal success.
    """

    def __init__(self, order) -> None:
        self.order = order
        super().__init__(f"Resolved to existing order {order.id}")


class OrderNotFoundError(Exception):
    def __init__(self, lookup) -> None:
        self.lookup = lookup
        super().__init__(f"Order {lookup} not found")


# ── Outbox ───────────────────────────────────────────────────────────────────

class NoActiveTransaction(RuntimeError):
    """An event was staged with no transaction open. A wiring bug."""
    pass


class PublishError(Exception):
    """The broker nacked, returned, or could not accept a message."""
    pass


class EventPublishingFailed(Exception):
    """The order committed but its event was not delivered after all retries."""

    def __init__(
        self,
        event_type: str,
        destination: str,
        order_number: str,
        attempts: int,
        cause: BaseException | None = None,
    ) -> None:
        self.event_type = event_type
        self.destination = destination
        self.order_number = order_number
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Failed to publish {event_type} for order {order_number} "
            f"to {destination} after {attempts} attempt(s): {cause}"
        )
