"""Tagged errors raised by room mutators.

Every error carries a short machine-readable ``code`` (e.g. ``not_host``) that
is returned to the caller unchanged. Raising one inside a mutator aborts the
transaction before anything is written.
"""


class RoomError(Exception):
    """Base class for all room/game errors."""
    kind = "error"

    def __init__(self, code: str, message: str = ""):
        self.code = code
        super().__init__(message or code)


class AuthorizationError(RoomError):
    """Caller lacks the privilege for the mutation (not_host, not_saboteur, ...)."""
    kind = "authorization"


class PreconditionError(RoomError):
    """Room or game is not in a state that permits the operation."""
    kind = "precondition"


class InputValidationError(RoomError):
    """Malformed or out-of-range input."""
    kind = "validation"


class ConflictError(RoomError):
    """Transaction exhausted its retry budget."""
    kind = "concurrency"

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__("conflict", f"Gave up after {attempts} version conflicts")


class NotFoundError(RoomError):
    kind = "not_found"


class RoomCodeExhausted(RoomError):
    """Raised when every generated room code collided with an existing room."""
    kind = "concurrency"

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__("room_code_exhausted", f"No free room code after {attempts} attempts")
