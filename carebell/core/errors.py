# carebell/core/errors.py
from __future__ import annotations


class CarebellError(Exception):
    """Base class for everything the reminder subsystem raises on purpose."""


class NotFound(CarebellError):
    def __init__(self, reminder_id: str) -> None:
        super().__init__(f"reminder {reminder_id} not found")
        self.reminder_id = reminder_id


class InvalidTransition(CarebellError):
    """The requested event does not apply to the reminder's current state."""

    def __init__(self, reminder_id: str, state: str, event: str) -> None:
        super().__init__(f"reminder {reminder_id}: {event} not allowed in {state}")
        self.reminder_id = reminder_id
        self.state = state
        self.event = event


class DispatchFailure(CarebellError):
    """The transport gave up after its own retries."""


class StoreConflict(CarebellError):
    """A compare-and-set write lost a race with another writer."""

    def __init__(self, reminder_id: str, field: str, expected, actual) -> None:
        super().__init__(
            f"reminder {reminder_id}: {field} is {actual!r}, expected {expected!r}"
        )
        self.reminder_id = reminder_id
        self.field = field
        self.expected = expected
        self.actual = actual
