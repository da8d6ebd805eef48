"""
Amortization Engine

Pure functions over loan terms: the fixed periodic payment of a fully
amortizing loan, its total interest, its payoff date and the full
period-by-period schedule. Nothing here touches storage or shared state,
so every function is safe to call concurrently.

All money math is Decimal. Each interest portion is rounded to the
currency's minor unit as the schedule is built, and the last period
absorbs the accumulated rounding so the loan always retires exactly.
"""

import calendar
from bisect import bisect_right
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .currency import Currency, Money, Numeric, minor_unit, to_decimal
from .exceptions import (
    ArithmeticInconsistencyError, InvalidAmountError, InvalidRateError, InvalidTermError
)


class PaymentFrequency(Enum):
    """Supported payment frequencies"""
    MONTHLY = "monthly"        # 12 payments per year
    QUARTERLY = "quarterly"    # 4 payments per year
    ANNUALLY = "annually"      # 1 payment per year

    @property
    def periods_per_year(self) -> int:
        return _PERIODS_PER_YEAR[self]

    @property
    def months_per_period(self) -> int:
        return 12 // self.periods_per_year

    @classmethod
    def parse(cls, value: Union['PaymentFrequency', str]) -> 'PaymentFrequency':
        """Accept an enum member or its value (case-insensitive)"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidTermError(
                f"Unsupported payment frequency: {value}",
                {"payment_frequency": value}
            ) from None

    @classmethod
    def from_periods_per_year(cls, periods_per_year: int) -> 'PaymentFrequency':
        for frequency, periods in _PERIODS_PER_YEAR.items():
            if periods == periods_per_year:
                return frequency
        raise InvalidTermError(
            f"Unsupported number of periods per year: {periods_per_year}",
            {"periods_per_year": periods_per_year}
        )


_PERIODS_PER_YEAR = {
    PaymentFrequency.MONTHLY: 12,
    PaymentFrequency.QUARTERLY: 4,
    PaymentFrequency.ANNUALLY: 1,
}

PrincipalInput = Union[Money, Numeric]


def _validate_term(term_periods: Any) -> int:
    if isinstance(term_periods, bool) or not isinstance(term_periods, int) or term_periods < 1:
        raise InvalidTermError(
            "Term must be at least one payment period",
            {"term_periods": term_periods}
        )
    return term_periods


def _validate_principal(principal: PrincipalInput, currency: Currency) -> Money:
    if isinstance(principal, Money):
        money = principal
    else:
        try:
            money = Money(to_decimal(principal), currency)
        except ValueError:
            raise InvalidAmountError(principal) from None
    if not money.is_positive():
        raise InvalidAmountError(principal)
    return money


def _validate_rate(annual_rate: Numeric) -> Decimal:
    try:
        rate = to_decimal(annual_rate)
    except ValueError:
        raise InvalidRateError(annual_rate) from None
    if rate < 0:
        raise InvalidRateError(annual_rate)
    return rate


def _validate_frequency(periods_per_year: Any) -> int:
    if isinstance(periods_per_year, PaymentFrequency):
        return periods_per_year.periods_per_year
    if isinstance(periods_per_year, bool):
        raise InvalidTermError(
            f"Unsupported number of periods per year: {periods_per_year}",
            {"periods_per_year": periods_per_year}
        )
    return PaymentFrequency.from_periods_per_year(periods_per_year).periods_per_year


def _validate_inputs(
    principal: PrincipalInput,
    annual_rate: Numeric,
    term_periods: int,
    periods_per_year: int,
    currency: Currency
) -> Tuple[Money, Decimal, int, int]:
    """Check every input before any figure is produced"""
    term_periods = _validate_term(term_periods)
    money = _validate_principal(principal, currency)
    rate = _validate_rate(annual_rate)
    periods_per_year = _validate_frequency(periods_per_year)
    return money, rate, term_periods, periods_per_year


def periodic_rate(annual_rate: Decimal, periods_per_year: int) -> Decimal:
    """Convert an annual percentage rate to a per-period fraction"""
    return annual_rate / Decimal('100') / Decimal(periods_per_year)


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def compute_periodic_payment(
    principal: PrincipalInput,
    annual_rate: Numeric,
    term_periods: int,
    periods_per_year: int,
    currency: Currency = Currency.USD
) -> Money:
    """
    Fixed payment that retires the principal over term_periods.

    Args:
        principal: Amount borrowed (Money, or a number in `currency`)
        annual_rate: Annual interest rate as a percentage (6 means 6%)
        term_periods: Number of payment periods
        periods_per_year: 12, 4 or 1
        currency: Currency of a plain numeric principal

    Returns:
        Payment rounded half-up to the currency minor unit

    Raises:
        InvalidTermError: term_periods < 1 or unsupported periods_per_year
        InvalidAmountError: principal <= 0
        InvalidRateError: annual_rate < 0
    """
    money, rate, term_periods, periods_per_year = _validate_inputs(
        principal, annual_rate, term_periods, periods_per_year, currency
    )
    r = periodic_rate(rate, periods_per_year)

    if r == 0:
        return Money(money.amount / Decimal(term_periods), money.currency)

    # Standard annuity formula: P * r / (1 - (1 + r)^-n)
    payment = money.amount * r / (Decimal('1') - (Decimal('1') + r) ** -term_periods)
    return Money(payment, money.currency)


def compute_total_interest(
    periodic_payment: PrincipalInput,
    term_periods: int,
    principal: PrincipalInput,
    currency: Currency = Currency.USD,
    annual_rate: Optional[Numeric] = None
) -> Money:
    """
    Interest paid over the life of the loan at the nominal payment.

    A zero annual_rate means zero interest. Otherwise a shortfall no larger
    than the payment rounding (half a minor unit per period) counts as zero,
    since the final period makes it up.

    Raises:
        ArithmeticInconsistencyError: The shortfall is larger than rounding
            explains, which means the payment cannot retire the principal
    """
    term_periods = _validate_term(term_periods)
    if isinstance(periodic_payment, Money):
        currency = periodic_payment.currency
        payment = periodic_payment
    else:
        payment = Money(to_decimal(periodic_payment), currency)
    principal_money = _validate_principal(principal, currency)
    if principal_money.currency != payment.currency:
        raise ValueError(
            f"Payment currency {payment.currency.code} does not match "
            f"principal currency {principal_money.currency.code}"
        )

    zero = Money.zero(payment.currency)
    if annual_rate is not None and _validate_rate(annual_rate) == 0:
        return zero

    total_interest = payment * term_periods - principal_money
    rounding_allowance = minor_unit(payment.currency) * term_periods / 2
    if total_interest.is_negative() and -total_interest.amount <= rounding_allowance:
        return zero
    if total_interest.is_negative():
        raise ArithmeticInconsistencyError(
            "Total interest is negative",
            {
                "periodic_payment": payment.amount,
                "term_periods": term_periods,
                "principal": principal_money.amount,
                "total_interest": total_interest.amount
            }
        )
    return total_interest


def compute_end_date(start_date: date, term_periods: int, periods_per_year: int) -> date:
    """Date of the final payment: start_date advanced by term_periods periods"""
    term_periods = _validate_term(term_periods)
    months_per_period = 12 // _validate_frequency(periods_per_year)
    return add_months(start_date, term_periods * months_per_period)


@dataclass(frozen=True)
class ScheduleEntry:
    """Single period of an amortization schedule"""
    period: int
    due_date: date
    payment_amount: Money
    interest_portion: Money
    principal_portion: Money
    remaining_balance: Money

    def __post_init__(self):
        if self.principal_portion + self.interest_portion != self.payment_amount:
            raise ArithmeticInconsistencyError(
                f"Payment {self.payment_amount.to_string()} does not equal principal "
                f"{self.principal_portion.to_string()} + interest {self.interest_portion.to_string()}",
                {"period": self.period}
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "due_date": self.due_date.isoformat(),
            "payment_amount": str(self.payment_amount.amount),
            "interest_portion": str(self.interest_portion.amount),
            "principal_portion": str(self.principal_portion.amount),
            "remaining_balance": str(self.remaining_balance.amount)
        }


@dataclass(frozen=True)
class AmortizationSchedule:
    """
    Ordered, immutable payment schedule.

    The entries are the record used to answer balance questions; nothing
    is re-derived once the schedule exists.
    """
    principal: Money
    entries: Tuple[ScheduleEntry, ...]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[ScheduleEntry]:
        return iter(self.entries)

    def __getitem__(self, index):
        return self.entries[index]

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    @property
    def final_entry(self) -> ScheduleEntry:
        return self.entries[-1]

    def balance_after(self, period: int) -> Money:
        """Remaining balance once `period` payments have been made (0 = none)"""
        if period == 0:
            return self.principal
        if not 1 <= period <= len(self.entries):
            raise IndexError(f"Period {period} is outside the schedule (1..{len(self.entries)})")
        return self.entries[period - 1].remaining_balance

    def periods_due_by(self, as_of: date) -> int:
        """Number of payments whose due date is on or before as_of"""
        return bisect_right([entry.due_date for entry in self.entries], as_of)

    def _total(self, attribute: str, periods: Optional[int] = None) -> Money:
        total = Money.zero(self.currency)
        for entry in self.entries[:periods]:
            total = total + getattr(entry, attribute)
        return total

    def total_interest(self, periods: Optional[int] = None) -> Money:
        return self._total("interest_portion", periods)

    def total_principal(self, periods: Optional[int] = None) -> Money:
        return self._total("principal_portion", periods)

    def total_paid(self, periods: Optional[int] = None) -> Money:
        return self._total("payment_amount", periods)

    def to_list(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self.entries]


def _check_schedule(schedule: AmortizationSchedule) -> None:
    """Post-conditions of a fully amortizing schedule"""
    for entry in schedule:
        if entry.principal_portion.is_negative() or entry.remaining_balance.is_negative():
            raise ArithmeticInconsistencyError(
                "Schedule contains a negative principal portion or balance",
                {"period": entry.period}
            )

    if not schedule.final_entry.remaining_balance.is_zero():
        raise ArithmeticInconsistencyError(
            "Schedule does not retire the loan",
            {"remaining_balance": schedule.final_entry.remaining_balance.amount}
        )

    if schedule.total_principal() != schedule.principal:
        raise ArithmeticInconsistencyError(
            "Principal portions do not add up to the principal",
            {
                "principal": schedule.principal.amount,
                "principal_repaid": schedule.total_principal().amount
            }
        )


def generate_schedule(
    principal: PrincipalInput,
    annual_rate: Numeric,
    term_periods: int,
    periods_per_year: int,
    start_date: date,
    currency: Currency = Currency.USD
) -> AmortizationSchedule:
    """
    Build the full period-by-period schedule.

    Every input is validated before the first entry is built, so the caller
    either gets the complete schedule or an exception.
    """
    money, rate, term_periods, periods_per_year = _validate_inputs(
        principal, annual_rate, term_periods, periods_per_year, currency
    )
    payment = compute_periodic_payment(money, rate, term_periods, periods_per_year)
    r = periodic_rate(rate, periods_per_year)
    months_per_period = 12 // periods_per_year
    zero = Money.zero(money.currency)

    entries = []
    balance = money
    for period in range(1, term_periods + 1):
        interest = balance * r
        principal_portion = payment - interest
        payment_amount = payment

        # Final period absorbs rounding drift; earlier periods never overpay
        if period == term_periods or principal_portion > balance:
            principal_portion = balance
            payment_amount = principal_portion + interest

        balance = balance - principal_portion if period < term_periods else zero
        entries.append(ScheduleEntry(
            period=period,
            due_date=add_months(start_date, period * months_per_period),
            payment_amount=payment_amount,
            interest_portion=interest,
            principal_portion=principal_portion,
            remaining_balance=balance
        ))

    schedule = AmortizationSchedule(principal=money, entries=tuple(entries))
    _check_schedule(schedule)
    return schedule


@dataclass(frozen=True)
class LoanTerms:
    """
    Inputs of a fully amortizing loan.

    Construction validates the terms, so a LoanTerms instance always
    describes a loan the engine can amortize.
    """
    principal: Money
    annual_interest_rate: Decimal      # Percentage, e.g. Decimal('6.5')
    term_periods: int
    payment_frequency: PaymentFrequency
    start_date: date

    def __post_init__(self):
        frequency = PaymentFrequency.parse(self.payment_frequency)
        principal, rate, _, _ = _validate_inputs(
            self.principal, self.annual_interest_rate, self.term_periods,
            frequency.periods_per_year, Currency.USD
        )
        object.__setattr__(self, 'principal', principal)
        object.__setattr__(self, 'annual_interest_rate', rate)
        object.__setattr__(self, 'payment_frequency', frequency)

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    @property
    def periods_per_year(self) -> int:
        return self.payment_frequency.periods_per_year

    def to_dict(self) -> Dict[str, Any]:
        return {
            "principal": str(self.principal.amount),
            "currency": self.currency.code,
            "annual_interest_rate": str(self.annual_interest_rate),
            "term_periods": self.term_periods,
            "payment_frequency": self.payment_frequency.value,
            "start_date": self.start_date.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoanTerms':
        return cls(
            principal=Money(Decimal(data["principal"]), Currency[data["currency"]]),
            annual_interest_rate=Decimal(data["annual_interest_rate"]),
            term_periods=data["term_periods"],
            payment_frequency=PaymentFrequency(data["payment_frequency"]),
            start_date=date.fromisoformat(data["start_date"])
        )


@dataclass(frozen=True)
class LoanSummary:
    """Headline figures derived from loan terms"""
    periodic_payment: Money
    total_interest: Money
    end_date: date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "periodic_payment": str(self.periodic_payment.amount),
            "total_interest": str(self.total_interest.amount),
            "end_date": self.end_date.isoformat(),
            "currency": self.periodic_payment.currency.code
        }


@dataclass(frozen=True)
class LoanCalculation:
    """Summary plus, when requested, the full schedule"""
    terms: LoanTerms
    summary: LoanSummary
    schedule: Optional[AmortizationSchedule] = None


def summarize(terms: LoanTerms) -> LoanSummary:
    payment = compute_periodic_payment(
        terms.principal, terms.annual_interest_rate,
        terms.term_periods, terms.periods_per_year
    )
    return LoanSummary(
        periodic_payment=payment,
        total_interest=compute_total_interest(
            payment, terms.term_periods, terms.principal,
            annual_rate=terms.annual_interest_rate
        ),
        end_date=compute_end_date(terms.start_date, terms.term_periods, terms.periods_per_year)
    )


def build_schedule(terms: LoanTerms) -> AmortizationSchedule:
    return generate_schedule(
        terms.principal, terms.annual_interest_rate, terms.term_periods,
        terms.periods_per_year, terms.start_date
    )


def calculate(terms: LoanTerms, include_schedule: bool = False) -> LoanCalculation:
    """Summary for the terms, with the schedule attached when asked for"""
    return LoanCalculation(
        terms=terms,
        summary=summarize(terms),
        schedule=build_schedule(terms) if include_schedule else None
    )
