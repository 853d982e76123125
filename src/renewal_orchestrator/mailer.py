"""Outbound email senders used by the submission lifecycle."""

from __future__ import annotations

import logging
import random
import re
import time
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True)
class OutboundEmail:
    to: str
    subject: str
    body: str
    attachment_names: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SendResult:
    success: bool
    email_id: str | None = None
    error: str | None = None


class EmailSender(Protocol):
    def send(self, email: OutboundEmail) -> SendResult: ...


class MockEmailSender:
    """Accepts every well-formed address without sending anything.

    ``failure_rate`` makes a fraction of sends fail at random so the failed ->
    retry path can be exercised; pass ``seed`` for repeatable runs.
    """

    def __init__(self, *, failure_rate: float = 0.0, seed: int | None = None) -> None:
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0 and 1")
        self.failure_rate = failure_rate
        self._random = random.Random(seed)
        self.sent: list[OutboundEmail] = []

    def send(self, email: OutboundEmail) -> SendResult:
        if not EMAIL_RE.match(email.to):
            return SendResult(success=False, error=f"Invalid email address: {email.to}")
        if self.failure_rate and self._random.random() < self.failure_rate:
            logger.warning("mock_email event=simulated_failure to=%s", email.to)
            return SendResult(success=False, error="Simulated delivery failure")

        email_id = f"mock_{int(time.time() * 1000)}_{self._random.randrange(16**9):09x}"
        self.sent.append(email)
        logger.info(
            "mock_email event=sent to=%s email_id=%s attachments=%d",
            email.to,
            email_id,
            len(email.attachment_names),
        )
        return SendResult(success=True, email_id=email_id)
