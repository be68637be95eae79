# Exceptions raised by notification channels and the dispatcher.
# The consumer turns a failed dispatch into a dead-lettered message.


class NotificationError(Exception):
    """A notification send failed. Retryable unless a subclass says otherwise."""

    code = "NOTIFICATION_ERROR"
    retryable = True

    def __init__(self, message: str, code: str | None = None) -> None:
        if code is not None:
            self.code = code
        super().__init__(message)


class InvalidRecipient(NotificationError):
    """The recipient can never be reached; retrying will not help."""

    code = "INVALID_RECIPIENT"
    retryable = False


class NetworkTimeout(NotificationError):
    code = "NETWORK_TIMEOUT"


class ServiceUnavailable(NotificationError):
    code = "SERVICE_UNAVAILABLE"


class NotificationDispatchFailed(Exception):
    def __init__(self, user_id: int, failures: dict[str, NotificationError]) -> None:
        self.user_id = user_id
        self.failures = failures
        summary = ", ".join(f"{name}: {exc.code}" for name, exc in failures.items())
        super().__init__(f"Notification to user {user_id} failed ({summary})")
