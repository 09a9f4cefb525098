"""
Error taxonomy for the competition and presence engine.

Every error is a ValueError carrying a stable ``kind`` and the HTTP status the
API layer answers with. Routes catch ``CompetitionError`` and translate it;
anything else is an unexpected failure.
"""

from typing import Optional


class CompetitionError(ValueError):
    """Base class for errors surfaced directly to the caller."""

    kind = "error"
    status_code = 400

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message())

    @classmethod
    def default_message(cls) -> str:
        return cls.kind.replace("_", " ").capitalize()

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": str(self)}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(CompetitionError):
    kind = "validation_error"
    status_code = 400


class SelfInvitation(ValidationError):
    kind = "self_invitation"

    @classmethod
    def default_message(cls) -> str:
        return "Cannot invite yourself"


class PastSchedule(ValidationError):
    kind = "past_schedule"

    @classmethod
    def default_message(cls) -> str:
        return "Scheduled time must be in the future"


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class NotFound(CompetitionError):
    kind = "not_found"
    status_code = 404


class VenueNotFound(NotFound):
    kind = "venue_not_found"

    @classmethod
    def default_message(cls) -> str:
        return "Venue not found"


class SportNotFound(NotFound):
    kind = "sport_not_found"

    @classmethod
    def default_message(cls) -> str:
        return "Sport not found"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class Forbidden(CompetitionError):
    kind = "forbidden"
    status_code = 403


# ---------------------------------------------------------------------------
# State conflicts
# ---------------------------------------------------------------------------


class StateConflict(CompetitionError):
    kind = "state_conflict"
    status_code = 409


class NotPending(StateConflict):
    kind = "not_pending"

    @classmethod
    def default_message(cls) -> str:
        return "Invitation is no longer pending"


class DuplicatePending(StateConflict):
    kind = "duplicate_pending"


class InvalidState(StateConflict):
    """Transition attempted from the wrong source state."""

    kind = "invalid_state"

    def __init__(self, required, current: Optional[str] = None, message: Optional[str] = None):
        if isinstance(required, str):
            required = (required,)
        self.required = tuple(required)
        self.current = current
        if message is None:
            expected = " or ".join(self.required)
            message = f"Match must be {expected}"
            if current:
                message += f" (currently {current})"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Distance threshold
# ---------------------------------------------------------------------------


class TooFar(CompetitionError):
    kind = "too_far"
    status_code = 422

    def __init__(self, distance_m: float, max_distance_m: float):
        self.distance_m = distance_m
        self.max_distance_m = max_distance_m
        super().__init__(
            f"Too far from venue to check in ({distance_m:.0f} m, max {max_distance_m:.0f} m)"
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["distance_m"] = round(self.distance_m, 1)
        return data


# ---------------------------------------------------------------------------
# Scoring oracle
# ---------------------------------------------------------------------------


class OracleFailure(CompetitionError):
    """The scoring oracle gave no usable result; recovered into a dispute."""

    kind = "oracle_failure"
    status_code = 502
