"""Error taxonomy for the lane booking engine.

Every error carries the HTTP status it maps to and a stable ``code`` so
callers can tell an expected outcome (someone else took the slot) from an
infrastructure fault (the store is down) without parsing messages.
"""


class LaneBookingError(Exception):
    status_code: int = 400
    code: str = "lane_booking_error"
    retryable: bool = False

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidInput(LaneBookingError):
    status_code = 400
    code = "invalid_input"


class VenueNotFound(LaneBookingError):
    status_code = 404
    code = "venue_not_found"


class SlotUnavailable(LaneBookingError):
    """Lost the race for the requested lanes; pick another slot."""

    status_code = 409
    code = "slot_unavailable"

    def __init__(self, message: str = "Slot unavailable") -> None:
        super().__init__(message)


class HoldNotFound(LaneBookingError):
    status_code = 404
    code = "hold_not_found"

    def __init__(self, message: str = "Hold not found") -> None:
        super().__init__(message)


class HoldExpired(LaneBookingError):
    status_code = 410
    code = "hold_expired"

    def __init__(self, message: str = "Hold expired") -> None:
        super().__init__(message)


class ReservationNotFound(LaneBookingError):
    status_code = 404
    code = "reservation_not_found"

    def __init__(self, message: str = "Reservation not found") -> None:
        super().__init__(message)


class ReservationStateConflict(LaneBookingError):
    status_code = 409
    code = "reservation_state_conflict"


class CancellationDenied(LaneBookingError):
    status_code = 409
    code = "cancellation_denied"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Cancellation denied: {reason}")


class StoreUnavailable(LaneBookingError):
    """Transaction or lock infrastructure failure; safe to retry with backoff."""

    status_code = 503
    code = "store_unavailable"
    retryable = True

    def __init__(self, message: str = "Store unavailable") -> None:
        super().__init__(message)
