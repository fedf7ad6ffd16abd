"""
Error taxonomy for the replenishment and approval services

Every error carries enough context (entity id, attempted transition) for the
caller to act. Nothing here is retried automatically.
"""
from typing import Any, Dict, Optional


class ReplenishmentError(Exception):
    """Base exception for replenishment and purchasing errors"""

    status_code = 500
    default_message = "An error occurred in the replenishment service"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message or self.default_message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert the exception to a response payload"""
        error_dict = {
            'error': self.__class__.__name__,
            'message': self.message,
        }

        if self.code:
            error_dict['code'] = self.code

        if self.details:
            error_dict['details'] = self.details

        return error_dict


class ValidationError(ReplenishmentError):
    """Malformed rule, order or workflow input; raised before any state change"""

    status_code = 400
    default_message = "Validation error"


class NotFoundError(ReplenishmentError):
    """Referenced rule, forecast, order, workflow or approval does not exist"""

    status_code = 404
    default_message = "Resource not found"


class ConflictError(ReplenishmentError):
    """Transition not allowed from the entity's current state"""

    status_code = 409
    default_message = "Conflicting state transition"
