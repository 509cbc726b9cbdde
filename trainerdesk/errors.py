from __future__ import annotations


class TrainerDeskError(Exception):
    """Base class for errors raised by core scheduling and billing operations."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BookingValidationError(TrainerDeskError):
    status_code = 400


class SlotUnavailableError(TrainerDeskError):
    status_code = 400

    def __init__(self, message: str = "This time slot is not available for booking") -> None:
        super().__init__(message)


class SlotConflictError(TrainerDeskError):
    status_code = 400

    def __init__(self, message: str = "This time slot conflicts with an existing appointment") -> None:
        super().__init__(message)


class AlreadyProcessedError(TrainerDeskError):
    status_code = 400


class TenantAccessError(TrainerDeskError):
    status_code = 403

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class NotFoundError(TrainerDeskError):
    status_code = 404


class CalendarNotConnectedError(TrainerDeskError):
    status_code = 400

    def __init__(self, message: str = "Google Calendar not connected") -> None:
        super().__init__(message)


class EmailDeliveryError(TrainerDeskError):
    status_code = 500

    def __init__(self, message: str = "Failed to send invoice email") -> None:
        super().__init__(message)
