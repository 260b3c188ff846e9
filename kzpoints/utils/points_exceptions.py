"""
Custom exceptions for the points engine with caller-friendly error messages.
"""

class PointsEngineError(Exception):
    """Base exception for points-engine errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class InvalidRecordError(PointsEngineError):
    """Raised when a submitted record fails validation."""
    def __init__(self, reason: str):
        super().__init__(
            f"Invalid record: {reason}",
            f"Record rejected: {reason}"
        )

class InvalidTransitionError(PointsEngineError):
    """Raised when a record classification change is not a legal edge."""
    def __init__(self, current, target):
        current_name = getattr(current, 'value', current)
        target_name = getattr(target, 'value', target)
        super().__init__(
            f"Illegal record status transition {current_name} -> {target_name}",
            f"A record cannot move from '{current_name}' to '{target_name}'."
        )
        self.current = current
        self.target = target

class RecordNotFoundError(PointsEngineError):
    """Raised when a record does not exist."""
    def __init__(self, record_id: int):
        super().__init__(f"Record {record_id} not found")
        self.record_id = record_id

class FilterNotFoundError(PointsEngineError):
    """Raised when a filter does not exist."""
    def __init__(self, filter_id: int):
        super().__init__(f"Filter {filter_id} not found")
        self.filter_id = filter_id

class PlayerNotFoundError(PointsEngineError):
    """Raised when a player does not exist."""
    def __init__(self, player_id: int):
        super().__init__(f"Player {player_id} not found")
        self.player_id = player_id

class FitError(PointsEngineError):
    """Raised when the distribution fitter cannot produce parameters."""
    TOO_FEW_SAMPLES = "too_few_samples"
    DEGENERATE = "degenerate"
    DID_NOT_CONVERGE = "did_not_converge"

    def __init__(self, reason: str, details: str = None):
        message = f"Distribution fit unavailable ({reason})"
        if details:
            message = f"{message}: {details}"
        super().__init__(message)
        self.reason = reason

class InvariantViolation(PointsEngineError):
    """Describes derived data that contradicts its source of truth."""
    def __init__(self, details: str):
        super().__init__(
            f"Invariant violation: {details}",
            "Internal data-integrity error."
        )
        self.details = details

class TransactionError(PointsEngineError):
    """Raised when transaction operations fail."""
    def __init__(self, operation: str, attempts: int):
        super().__init__(
            f"Transaction failed for {operation} after {attempts} attempts",
            "Failed to save changes. Please try again."
        )
