"""
Notification channels.

Providers are simulated: a send logs the message it would deliver. Real
providers plug in behind the same ``send(user_id, message)`` interface and
signal failures with NotificationError subclasses.
"""
from __future__ import annotations

import logging
from typing import Protocol

from app.notifications.exceptions import InvalidRecipient

logger = logging.getLogger(__name__)


class NotificationChannel(Protocol):
    name: str

    def send(self, user_id: int, message: str) -> None: ...


def _check(user_id: int, message: str) -> None:
    if user_id is None or user_id <= 0:
        raise InvalidRecipient(f"Invalid recipient user id: {user_id}")
    if not message:
        raise ValueError("Message cannot be empty")


class EmailChannel:
    name = "email"

    def send(self, user_id: int, message: str) -> None:
        _check(user_id, message)
        logger.info("Sending email notification to user %s: %s", user_id, message)


class SmsChannel:
    name = "sms"

    def send(self, user_id: int, message: str) -> None:
        _check(user_id, message)
        logger.info("Sending SMS notification to user %s: %s", user_id, message)
