"""
Loan Module

Project loans: creation from validated terms, status lifecycle, listing,
schedules and as-of positions. Payment figures are never edited directly;
they are recomputed from the stored terms by the amortization engine.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from .amortization import (
    AmortizationSchedule, LoanSummary, LoanTerms, build_schedule, summarize
)
from .currency import Currency, Money
from .exceptions import InvalidStatusTransitionError, LoanNotFoundError
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord, utcnow


logger = get_logger("realty_crm.loans")


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "active"
    PAID_OFF = "paid_off"
    DEFAULTED = "defaulted"
    CANCELLED = "cancelled"


class LoanType(Enum):
    """Kinds of project financing"""
    MORTGAGE = "mortgage"
    CONSTRUCTION = "construction"
    BRIDGE = "bridge"
    HARD_MONEY = "hard_money"
    PRIVATE = "private"
    LINE_OF_CREDIT = "line_of_credit"
    OTHER = "other"


# Servicing events only ever move a loan out of ACTIVE
ALLOWED_TRANSITIONS = {
    LoanStatus.ACTIVE: {LoanStatus.PAID_OFF, LoanStatus.DEFAULTED, LoanStatus.CANCELLED},
    LoanStatus.PAID_OFF: set(),
    LoanStatus.DEFAULTED: set(),
    LoanStatus.CANCELLED: set(),
}


@dataclass
class Loan(StorageRecord):
    """Loan taken by a project from a lender"""
    project_id: str
    lender_name: str
    terms: LoanTerms
    loan_type: LoanType = LoanType.CONSTRUCTION
    status: LoanStatus = LoanStatus.ACTIVE
    notes: Optional[str] = None
    _summary: Optional[LoanSummary] = field(default=None, init=False, repr=False, compare=False)

    @property
    def summary(self) -> LoanSummary:
        if self._summary is None:
            self._summary = summarize(self.terms)
        return self._summary

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE

    def schedule(self) -> AmortizationSchedule:
        return build_schedule(self.terms)

    def to_dict(self) -> Dict[str, Any]:
        result = self.base_dict()
        result.update({
            "project_id": self.project_id,
            "lender_name": self.lender_name,
            "loan_type": self.loan_type.value,
            "status": self.status.value,
            "notes": self.notes,
            "terms": self.terms.to_dict(),
            # Derived, kept for listing only; recomputed on load
            "start_date": self.terms.start_date.isoformat(),
            "summary": self.summary.to_dict()
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        return cls(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            project_id=data["project_id"],
            lender_name=data["lender_name"],
            terms=LoanTerms.from_dict(data["terms"]),
            loan_type=LoanType(data["loan_type"]),
            status=LoanStatus(data["status"]),
            notes=data.get("notes")
        )


@dataclass(frozen=True)
class LoanPosition:
    """Where a loan stands on a given date, read off its schedule"""
    loan_id: str
    as_of: date
    periods_elapsed: int
    periods_remaining: int
    remaining_balance: Money
    principal_paid: Money
    interest_paid: Money
    next_payment_date: Optional[date]
    next_payment_amount: Optional[Money]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loan_id": self.loan_id,
            "as_of": self.as_of.isoformat(),
            "periods_elapsed": self.periods_elapsed,
            "periods_remaining": self.periods_remaining,
            "remaining_balance": str(self.remaining_balance.amount),
            "principal_paid": str(self.principal_paid.amount),
            "interest_paid": str(self.interest_paid.amount),
            "next_payment_date": self.next_payment_date.isoformat() if self.next_payment_date else None,
            "next_payment_amount": str(self.next_payment_amount.amount) if self.next_payment_amount else None
        }


@dataclass(frozen=True)
class ProjectLoanTotals:
    """Aggregate figures for the active loans of one project"""
    project_id: str
    currency: Currency
    as_of: date
    loan_count: int
    total_principal: Money
    total_interest: Money
    total_periodic_payment: Money
    remaining_balance: Money
    principal_paid: Money
    interest_paid: Money

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "currency": self.currency.code,
            "as_of": self.as_of.isoformat(),
            "loan_count": self.loan_count,
            "total_principal": str(self.total_principal.amount),
            "total_interest": str(self.total_interest.amount),
            "total_periodic_payment": str(self.total_periodic_payment.amount),
            "remaining_balance": str(self.remaining_balance.amount),
            "principal_paid": str(self.principal_paid.amount),
            "interest_paid": str(self.interest_paid.amount)
        }


class LoanManager:
    """
    Manages project loans from creation through payoff
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.loans_table = "loans"

    def create_loan(
        self,
        project_id: str,
        lender_name: str,
        terms: LoanTerms,
        loan_type: LoanType = LoanType.CONSTRUCTION,
        notes: Optional[str] = None
    ) -> Loan:
        """
        Create an active loan for a project

        Args:
            project_id: Project that takes the loan
            lender_name: Bank, fund or individual lending the money
            terms: Validated loan terms
            loan_type: Kind of financing
            notes: Free-form notes

        Returns:
            Created Loan object
        """
        if not project_id:
            raise ValueError("Project ID is required")
        if not lender_name or not lender_name.strip():
            raise ValueError("Lender name is required")

        now = utcnow()
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            project_id=project_id,
            lender_name=lender_name.strip(),
            terms=terms,
            loan_type=loan_type,
            notes=notes
        )
        # Computing the summary up front surfaces calculation errors before anything is stored
        summary = loan.summary
        with self.storage.atomic():
            self._save_loan(loan)

        log_action(
            logger, "info", f"Loan {loan.id} created for project {project_id}",
            action="loan_created", resource=f"loan:{loan.id}",
            extra={
                "project_id": project_id,
                "principal": terms.principal.to_string(),
                "annual_interest_rate": str(terms.annual_interest_rate),
                "term_periods": terms.term_periods,
                "payment_frequency": terms.payment_frequency.value,
                "periodic_payment": summary.periodic_payment.to_string()
            }
        )
        return loan

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        loan_dict = self.storage.load(self.loans_table, loan_id)
        if loan_dict:
            return Loan.from_dict(loan_dict)
        return None

    def require_loan(self, loan_id: str, project_id: Optional[str] = None) -> Loan:
        """Get loan by ID, optionally checking it belongs to project_id"""
        loan = self.get_loan(loan_id)
        if loan is None or (project_id is not None and loan.project_id != project_id):
            raise LoanNotFoundError(loan_id)
        return loan

    def list_project_loans(self, project_id: str, status: Optional[LoanStatus] = None) -> List[Loan]:
        """Loans of a project, newest start date first"""
        filters = {"project_id": project_id}
        if status is not None:
            filters["status"] = status.value
        loans = [Loan.from_dict(data) for data in self.storage.find(self.loans_table, filters)]
        loans.sort(key=lambda loan: loan.terms.start_date, reverse=True)
        return loans

    def update_status(self, loan_id: str, status: LoanStatus, project_id: Optional[str] = None) -> Loan:
        """Apply a servicing event to the loan lifecycle"""
        loan = self.require_loan(loan_id, project_id)
        if loan.status == status:
            return loan
        if status not in ALLOWED_TRANSITIONS[loan.status]:
            raise InvalidStatusTransitionError(loan_id, loan.status.value, status.value)

        previous = loan.status
        loan.status = status
        loan.touch()
        with self.storage.atomic():
            self._save_loan(loan)

        log_action(
            logger, "info", f"Loan {loan_id} moved from {previous.value} to {status.value}",
            action="loan_status_changed", resource=f"loan:{loan_id}",
            extra={"previous_status": previous.value, "new_status": status.value}
        )
        return loan

    def delete_loan(self, loan_id: str, project_id: Optional[str] = None) -> None:
        loan = self.require_loan(loan_id, project_id)
        with self.storage.atomic():
            self.storage.delete(self.loans_table, loan.id)
        log_action(
            logger, "info", f"Loan {loan_id} deleted",
            action="loan_deleted", resource=f"loan:{loan_id}",
            extra={"project_id": loan.project_id}
        )

    def get_schedule(self, loan_id: str, project_id: Optional[str] = None) -> AmortizationSchedule:
        return self.require_loan(loan_id, project_id).schedule()

    def get_position(self, loan_id: str, as_of: Optional[date] = None, project_id: Optional[str] = None) -> LoanPosition:
        """
        Scheduled position of a loan on as_of (defaults to today).

        Balances are looked up in the schedule by the number of payments
        due on or before as_of; actual payment history is not consulted.
        """
        if as_of is None:
            as_of = date.today()
        return self._position(self.require_loan(loan_id, project_id), as_of)

    def _position(self, loan: Loan, as_of: date) -> LoanPosition:
        schedule = loan.schedule()

        elapsed = schedule.periods_due_by(as_of)
        upcoming = schedule[elapsed] if elapsed < len(schedule) else None
        return LoanPosition(
            loan_id=loan.id,
            as_of=as_of,
            periods_elapsed=elapsed,
            periods_remaining=len(schedule) - elapsed,
            remaining_balance=schedule.balance_after(elapsed),
            principal_paid=schedule.total_principal(elapsed),
            interest_paid=schedule.total_interest(elapsed),
            next_payment_date=upcoming.due_date if upcoming else None,
            next_payment_amount=upcoming.payment_amount if upcoming else None
        )

    def project_totals(
        self,
        project_id: str,
        currency: Currency = Currency.USD,
        as_of: Optional[date] = None
    ) -> ProjectLoanTotals:
        """
        Sum the active loans of a project held in `currency`.

        Remaining balance and amounts paid are the loans' scheduled
        positions on as_of (defaults to today).
        """
        if as_of is None:
            as_of = date.today()
        loans = [
            loan for loan in self.list_project_loans(project_id, LoanStatus.ACTIVE)
            if loan.terms.currency == currency
        ]
        zero = Money(Decimal('0'), currency)
        total_principal, total_interest, total_payment = zero, zero, zero
        remaining, principal_paid, interest_paid = zero, zero, zero
        for loan in loans:
            total_principal = total_principal + loan.terms.principal
            total_interest = total_interest + loan.summary.total_interest
            total_payment = total_payment + loan.summary.periodic_payment

            position = self._position(loan, as_of)
            remaining = remaining + position.remaining_balance
            principal_paid = principal_paid + position.principal_paid
            interest_paid = interest_paid + position.interest_paid

        return ProjectLoanTotals(
            project_id=project_id,
            currency=currency,
            as_of=as_of,
            loan_count=len(loans),
            total_principal=total_principal,
            total_interest=total_interest,
            total_periodic_payment=total_payment,
            remaining_balance=remaining,
            principal_paid=principal_paid,
            interest_paid=interest_paid
        )

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())
