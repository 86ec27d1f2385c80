"""
Exceptions shared by the league operations.

Every error carries a technical message for logs and a short user_message
that a presentation layer can show as-is. Caller mistakes derive from
LeagueValidationError; ConflictError marks a lost race the caller may retry
after re-fetching; PersistenceError wraps storage failures.
"""

class LeagueError(Exception):
    """Base exception for league operations."""
    retryable = False

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class LeagueValidationError(LeagueError):
    """Raised when the caller asks for something the rules do not allow."""

class NotFoundError(LeagueValidationError):
    """Raised when a referenced record does not exist."""
    def __init__(self, kind: str, record_id):
        super().__init__(
            f"{kind} {record_id} not found",
            f"That {kind.lower()} could not be found."
        )
        self.kind = kind
        self.record_id = record_id

class PermissionDeniedError(LeagueValidationError):
    """Raised when a player acts on a record they do not own."""

class StateError(LeagueValidationError):
    """Raised when a record is in the wrong state for the operation."""

class LobbyFullError(StateError):
    """Raised when joining a lobby that has no free seat."""
    def __init__(self, lobby_id: int):
        super().__init__(
            f"Lobby {lobby_id} is full",
            "This lobby is already full."
        )
        self.lobby_id = lobby_id

class InvalidPlacementsError(LeagueValidationError):
    """Raised when submitted placements are not a bijection onto 1..N."""

class AlreadyRespondedError(StateError):
    """Raised when a player validates or challenges a result twice."""
    def __init__(self, match_id: int, player_id: int, status: str):
        super().__init__(
            f"Player {player_id} already responded to Match {match_id} ({status})",
            "You have already responded to these results."
        )

class RatingInputError(LeagueValidationError, ValueError):
    """Raised when the rating engine receives malformed input."""

class ConflictError(LeagueError):
    """Raised when a concurrent write won the race; re-fetch and retry."""
    retryable = True

    def __init__(self, message: str):
        super().__init__(
            message,
            "Someone else changed this at the same time. Please try again."
        )

class PersistenceError(LeagueError):
    """Raised when the database is unavailable or a write fails."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Database error during {operation}: {details}",
            "A storage error occurred. Please try again later."
        )
        self.operation = operation
