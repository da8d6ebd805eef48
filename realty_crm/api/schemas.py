"""
Pydantic schemas for API requests
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from ..amortization import LoanTerms, PaymentFrequency
from ..config import get_config
from ..currency import Currency, Money
from ..exceptions import InvalidAmountError


class LoanTermsModel(BaseModel):
    principal: Decimal = Field(..., description="Amount borrowed")
    currency: str = Field(
        default_factory=lambda: get_config().default_currency,
        description="Currency code (USD, EUR, etc.)"
    )
    annual_interest_rate: Decimal = Field(..., description="Annual rate as a percentage, e.g. 6.5")
    term_periods: int = Field(..., description="Number of payment periods")
    payment_frequency: str = Field(
        default_factory=lambda: get_config().default_payment_frequency,
        description="monthly, quarterly or annually"
    )
    start_date: date

    def to_loan_terms(self) -> LoanTerms:
        try:
            currency = Currency[self.currency.upper()]
        except KeyError:
            raise ValueError(f"Unsupported currency: {self.currency}") from None
        try:
            principal = Money(self.principal, currency)
        except ValueError:
            raise InvalidAmountError(self.principal) from None

        return LoanTerms(
            principal=principal,
            annual_interest_rate=self.annual_interest_rate,
            term_periods=self.term_periods,
            payment_frequency=PaymentFrequency.parse(self.payment_frequency),
            start_date=self.start_date
        )


class CreateLoanRequest(BaseModel):
    lender_name: str
    loan_type: str = Field("construction", description="mortgage, construction, bridge, hard_money, private, line_of_credit, other")
    terms: LoanTermsModel
    notes: Optional[str] = None


class UpdateLoanRequest(BaseModel):
    status: str = Field(..., description="Loan status (active, paid_off, defaulted, cancelled)")
