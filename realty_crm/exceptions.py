"""
Exception Module

Errors raised by the amortization engine and the loan servicing layer.
Calculation errors subclass ValueError so callers that already treat bad
input as ValueError keep working.
"""

from typing import Any, Dict, Optional


class LoanCalculationError(ValueError):
    """Base class for invalid loan terms and failed calculation checks"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": {k: str(v) for k, v in self.details.items()}
        }


class InvalidAmountError(LoanCalculationError):
    """Principal is zero, negative or not a number"""

    def __init__(self, principal: Any):
        super().__init__("Principal must be greater than zero", {"principal": principal})


class InvalidRateError(LoanCalculationError):
    """Annual interest rate is negative or not a number"""

    def __init__(self, annual_rate: Any):
        super().__init__("Annual interest rate must not be negative", {"annual_rate": annual_rate})


class InvalidTermError(LoanCalculationError):
    """Term is shorter than one period, or the payment frequency is unsupported"""
    pass


class ArithmeticInconsistencyError(LoanCalculationError):
    """A post-condition of the calculation failed"""
    pass


class LoanNotFoundError(LookupError):
    """Raised when a loan cannot be found"""

    def __init__(self, loan_id: str):
        super().__init__(f"Loan {loan_id} not found")
        self.loan_id = loan_id


class InvalidStatusTransitionError(ValueError):
    """Raised when a loan status change violates the lifecycle"""

    def __init__(self, loan_id: str, current: str, requested: str):
        super().__init__(f"Loan {loan_id} cannot move from {current} to {requested}")
        self.loan_id = loan_id
        self.current = current
        self.requested = requested
