from __future__ import annotations

from typing import Any


class InvalidTimeError(ValueError):
    """Raised when a clock label is not a valid HH:MM value."""

    def __init__(self, value: Any) -> None:
        self.value = value
        super().__init__(f'Invalid time format "{value}". Expected HH:MM in 24-hour format.')


class UnknownDayTypeError(ValueError):
    """Raised when a day-type label is not weekday, saturday or sunday."""

    def __init__(self, value: Any) -> None:
        self.value = value
        super().__init__(f'Unknown day type "{value}".')


class UnknownZoneError(ValueError):
    """Raised when a zone label is not North, South or Floater."""

    def __init__(self, value: Any) -> None:
        self.value = value
        super().__init__(f'Unknown zone "{value}".')


class RunNotFoundError(LookupError):
    """Raised when a stored scheduling run does not exist."""

    def __init__(self, run_id: Any) -> None:
        self.run_id = run_id
        super().__init__(f"Shift run {run_id} not found.")


# Mapping of custom exceptions to HTTP status codes
CUSTOM_ERRORS = {
    InvalidTimeError: 400,
    UnknownDayTypeError: 400,
    UnknownZoneError: 400,
    RunNotFoundError: 404,
}
