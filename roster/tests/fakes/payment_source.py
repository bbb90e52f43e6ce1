"""Fake PaymentSourcePort implementation for testing."""

from roster.core.models import PaymentEvent
from roster.core.ports import PaymentSourcePort


class FakePaymentSource(PaymentSourcePort):
    """Returns canned payment events instead of calling an upstream shop."""

    def __init__(self, events: list[PaymentEvent] | None = None):
        self.events: list[PaymentEvent] = list(events or [])
        self.fetch_call_count = 0
        self.last_limit: int | None = None
        self.closed = False
        self.should_fail: bool = False
        self.fail_message: str = "Upstream unavailable"

    async def fetch_payments(self, limit: int | None = None) -> list[PaymentEvent]:
        self.fetch_call_count += 1
        self.last_limit = limit

        if self.should_fail:
            raise RuntimeError(self.fail_message)

        if limit is None:
            return list(self.events)
        return self.events[:limit]

    async def close(self) -> None:
        self.closed = True
