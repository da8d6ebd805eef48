"""
Test suite for loan servicing

Tests loan creation, status lifecycle, listing, positions and project totals.
"""

import logging
from datetime import date
from decimal import Decimal

import pytest

from realty_crm.amortization import LoanTerms, PaymentFrequency
from realty_crm.currency import Currency, Money
from realty_crm.exceptions import (
    InvalidStatusTransitionError, InvalidTermError, LoanNotFoundError
)
from realty_crm.loans import Loan, LoanManager, LoanStatus, LoanType
from realty_crm.storage import InMemoryStorage, SQLiteStorage


def make_terms(principal="100000", rate="6", term_periods=12,
               frequency=PaymentFrequency.MONTHLY, start_date=date(2024, 1, 1),
               currency=Currency.USD) -> LoanTerms:
    return LoanTerms(
        principal=Money(Decimal(principal), currency),
        annual_interest_rate=Decimal(rate),
        term_periods=term_periods,
        payment_frequency=frequency,
        start_date=start_date
    )


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def loan_manager(storage):
    return LoanManager(storage)


class TestLoanCreation:
    """Test creating and loading loans"""

    def test_create_loan(self, loan_manager):
        loan = loan_manager.create_loan(
            project_id="PRJ-1",
            lender_name="  First Community Bank ",
            terms=make_terms(),
            loan_type=LoanType.MORTGAGE,
            notes="Acquisition financing"
        )

        assert loan.id
        assert loan.project_id == "PRJ-1"
        assert loan.lender_name == "First Community Bank"
        assert loan.loan_type == LoanType.MORTGAGE
        assert loan.status == LoanStatus.ACTIVE
        assert loan.is_active
        assert loan.summary.periodic_payment == Money(Decimal('8606.64'))
        assert loan.summary.total_interest == Money(Decimal('3279.68'))
        assert loan.summary.end_date == date(2025, 1, 1)

    def test_default_loan_type(self, loan_manager):
        loan = loan_manager.create_loan("PRJ-1", "Lender", make_terms())
        assert loan.loan_type == LoanType.CONSTRUCTION

    def test_get_loan_round_trip(self, loan_manager):
        created = loan_manager.create_loan("PRJ-1", "Lender", make_terms(), notes="n")
        loaded = loan_manager.get_loan(created.id)

        assert loaded == created
        assert loaded.terms == created.terms
        assert loaded.summary == created.summary

    def test_get_missing_loan(self, loan_manager):
        assert loan_manager.get_loan("nope") is None
        with pytest.raises(LoanNotFoundError):
            loan_manager.require_loan("nope")

    def test_require_loan_checks_project(self, loan_manager):
        loan = loan_manager.create_loan("PRJ-1", "Lender", make_terms())

        assert loan_manager.require_loan(loan.id, "PRJ-1").id == loan.id
        with pytest.raises(LoanNotFoundError):
            loan_manager.require_loan(loan.id, "PRJ-2")

    @pytest.mark.parametrize("project_id, lender_name", [("", "Lender"), ("PRJ-1", ""), ("PRJ-1", "   ")])
    def test_required_fields(self, loan_manager, storage, project_id, lender_name):
        with pytest.raises(ValueError):
            loan_manager.create_loan(project_id, lender_name, make_terms())
        assert storage.count("loans") == 0

    def test_invalid_terms_rejected_before_storage(self, storage):
        with pytest.raises(InvalidTermError):
            make_terms(term_periods=0)
        assert storage.count("loans") == 0

    def test_creation_is_logged(self, loan_manager):
        records = []

        class Collector(logging.Handler):
            def emit(self, record):
                records.append(record)

        handler = Collector()
        logger = logging.getLogger("realty_crm.loans")
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        try:
            loan = loan_manager.create_loan("PRJ-1", "Lender", make_terms())
        finally:
            logger.removeHandler(handler)

        assert records[-1].action == "loan_created"
        assert records[-1].resource == f"loan:{loan.id}"
        assert records[-1].extra["periodic_payment"] == "USD 8,606.64"


class TestLoanListing:
    """Test listing a project's loans"""

    def test_list_newest_start_first(self, loan_manager):
        older = loan_manager.create_loan("PRJ-1", "A", make_terms(start_date=date(2023, 5, 1)))
        newer = loan_manager.create_loan("PRJ-1", "B", make_terms(start_date=date(2024, 5, 1)))
        loan_manager.create_loan("PRJ-2", "C", make_terms())

        loans = loan_manager.list_project_loans("PRJ-1")
        assert [loan.id for loan in loans] == [newer.id, older.id]

    def test_list_by_status(self, loan_manager):
        active = loan_manager.create_loan("PRJ-1", "A", make_terms())
        closed = loan_manager.create_loan("PRJ-1", "B", make_terms())
        loan_manager.update_status(closed.id, LoanStatus.PAID_OFF)

        assert [l.id for l in loan_manager.list_project_loans("PRJ-1", LoanStatus.ACTIVE)] == [active.id]
        assert [l.id for l in loan_manager.list_project_loans("PRJ-1", LoanStatus.PAID_OFF)] == [closed.id]

    def test_list_empty_project(self, loan_manager):
        assert loan_manager.list_project_loans("PRJ-404") == []


class TestLoanLifecycle:
    """Test status transitions and deletion"""

    @pytest.mark.parametrize("target", [LoanStatus.PAID_OFF, LoanStatus.DEFAULTED, LoanStatus.CANCELLED])
    def test_active_can_close(self, loan_manager, target):
        loan = loan_manager.create_loan("PRJ-1", "Lender", make_terms())
        updated = loan_manager.update_status(loan.id, target)

        assert updated.status == target
        assert not updated.is_active
        assert loan_manager.get_loan(loan.id).status == target
        assert updated.updated_at >= loan.updated_at

    def test_closed_loan_cannot_reopen(self, loan_manager):
        loan = loan_manager.create_loan("PRJ-1", "Lender", make_terms())
        loan_manager.update_status(loan.id, LoanStatus.PAID_OFF)

        with pytest.raises(InvalidStatusTransitionError):
            loan_manager.update_status(loan.id, LoanStatus.ACTIVE)
        with pytest.raises(InvalidStatusTransitionError):
            loan_manager.update_status(loan.id, LoanStatus.DEFAULTED)

    def test_same_status_is_noop(self, loan_manager):
        loan = loan_manager.create_loan("PRJ-1", "Lender", make_terms())
        assert loan_manager.update_status(loan.id, LoanStatus.ACTIVE).status == LoanStatus.ACTIVE

    def test_status_update_checks_project(self, loan_manager):
        loan = loan_manager.create_loan("PRJ-1", "Lender", make_terms())
        with pytest.raises(LoanNotFoundError):
            loan_manager.update_status(loan.id, LoanStatus.CANCELLED, project_id="PRJ-2")

    def test_delete_loan(self, loan_manager):
        loan = loan_manager.create_loan("PRJ-1", "Lender", make_terms())
        loan_manager.delete_loan(loan.id, "PRJ-1")

        assert loan_manager.get_loan(loan.id) is None
        with pytest.raises(LoanNotFoundError):
            loan_manager.delete_loan(loan.id)


class TestLoanPosition:
    """Test as-of positions read from the schedule"""

    def test_schedule(self, loan_manager):
        loan = loan_manager.create_loan("PRJ-1", "Lender", make_terms())
        schedule = loan_manager.get_schedule(loan.id)

        assert len(schedule) == 12
        assert schedule[0].due_date == date(2024, 2, 1)
        assert schedule.final_entry.remaining_balance.is_zero()

    def test_mid_term_position(self, loan_manager):
        loan = loan_manager.create_loan("PRJ-1", "Lender", make_terms())
        position = loan_manager.get_position(loan.id, date(2024, 3, 15))

        assert position.periods_elapsed == 2
        assert position.periods_remaining == 10
        assert position.remaining_balance == Money(Decimal('83746.19'))
        assert position.interest_paid == Money(Decimal('959.47'))
        assert position.principal_paid == Money(Decimal('16253.81'))
        assert position.next_payment_date == date(2024, 4, 1)
        assert position.next_payment_amount == Money(Decimal('8606.64'))

    def test_position_on_due_date_counts_payment(self, loan_manager):
        loan = loan_manager.create_loan("PRJ-1", "Lender", make_terms())
        position = loan_manager.get_position(loan.id, date(2024, 2, 1))

        assert position.periods_elapsed == 1
        assert position.remaining_balance == Money(Decimal('91893.36'))

    def test_position_before_first_payment(self, loan_manager):
        loan = loan_manager.create_loan("PRJ-1", "Lender", make_terms())
        position = loan_manager.get_position(loan.id, date(2023, 12, 1))

        assert position.periods_elapsed == 0
        assert position.remaining_balance == Money(Decimal('100000'))
        assert position.interest_paid.is_zero()
        assert position.next_payment_date == date(2024, 2, 1)

    def test_position_after_payoff(self, loan_manager):
        loan = loan_manager.create_loan("PRJ-1", "Lender", make_terms())
        position = loan_manager.get_position(loan.id, date(2026, 1, 1))

        assert position.periods_elapsed == 12
        assert position.periods_remaining == 0
        assert position.remaining_balance.is_zero()
        assert position.principal_paid == Money(Decimal('100000'))
        assert position.next_payment_date is None
        assert position.next_payment_amount is None

        data = position.to_dict()
        assert data["remaining_balance"] == "0.00"
        assert data["next_payment_date"] is None

    def test_position_defaults_to_today(self, loan_manager):
        loan = loan_manager.create_loan("PRJ-1", "Lender", make_terms())
        assert loan_manager.get_position(loan.id).as_of == date.today()


class TestProjectTotals:
    """Test aggregation across a project's active loans"""

    def test_totals(self, loan_manager):
        loan_manager.create_loan("PRJ-1", "Bank", make_terms())
        loan_manager.create_loan("PRJ-1", "Family", make_terms(principal="12000", rate="0"))
        cancelled = loan_manager.create_loan("PRJ-1", "Fund", make_terms(principal="50000"))
        loan_manager.update_status(cancelled.id, LoanStatus.CANCELLED)
        loan_manager.create_loan("PRJ-2", "Other", make_terms())

        totals = loan_manager.project_totals("PRJ-1")

        assert totals.loan_count == 2
        assert totals.total_principal == Money(Decimal('112000.00'))
        assert totals.total_interest == Money(Decimal('3279.68'))
        assert totals.total_periodic_payment == Money(Decimal('9606.64'))
        assert totals.to_dict()["currency"] == "USD"

    def test_totals_by_currency(self, loan_manager):
        loan_manager.create_loan("PRJ-1", "Bank", make_terms())
        loan_manager.create_loan("PRJ-1", "Tokyo Bank", make_terms(principal="1000000", currency=Currency.JPY))

        totals = loan_manager.project_totals("PRJ-1", Currency.JPY)

        assert totals.loan_count == 1
        assert totals.total_periodic_payment == Money(Decimal('86066'), Currency.JPY)

    def test_empty_totals(self, loan_manager):
        totals = loan_manager.project_totals("PRJ-1")
        assert totals.loan_count == 0
        assert totals.total_principal.is_zero()
        assert totals.remaining_balance.is_zero()

    def test_totals_as_of(self, loan_manager):
        loan_manager.create_loan("PRJ-1", "Bank", make_terms())
        loan_manager.create_loan("PRJ-1", "Family", make_terms(principal="12000", rate="0"))

        totals = loan_manager.project_totals("PRJ-1", as_of=date(2024, 3, 15))

        assert totals.as_of == date(2024, 3, 15)
        assert totals.remaining_balance == Money(Decimal('93746.19'))
        assert totals.principal_paid == Money(Decimal('18253.81'))
        assert totals.interest_paid == Money(Decimal('959.47'))

        data = totals.to_dict()
        assert data["as_of"] == "2024-03-15"
        assert data["remaining_balance"] == "93746.19"

    def test_totals_before_first_payment_and_after_payoff(self, loan_manager):
        loan_manager.create_loan("PRJ-1", "Bank", make_terms())
        loan_manager.create_loan("PRJ-1", "Family", make_terms(principal="12000", rate="0"))

        before = loan_manager.project_totals("PRJ-1", as_of=date(2023, 12, 1))
        assert before.remaining_balance == Money(Decimal('112000'))
        assert before.principal_paid.is_zero()

        after = loan_manager.project_totals("PRJ-1", as_of=date(2026, 1, 1))
        assert after.remaining_balance.is_zero()
        assert after.principal_paid == Money(Decimal('112000'))
        assert after.interest_paid == Money(Decimal('3279.68'))

    def test_totals_with_uneven_zero_rate_loan(self, loan_manager):
        loan_manager.create_loan("PRJ-1", "Family", make_terms(principal="10000", rate="0", term_periods=3))

        totals = loan_manager.project_totals("PRJ-1", as_of=date(2024, 3, 1))

        assert totals.total_interest.is_zero()
        assert totals.total_periodic_payment == Money(Decimal('3333.33'))
        assert totals.remaining_balance == Money(Decimal('3333.34'))


class TestLoanPersistence:
    """Test loans stored in SQLite"""

    def test_sqlite_round_trip(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "loans.db")
        manager = LoanManager(storage)
        loan = manager.create_loan(
            "PRJ-1", "Lender",
            make_terms(principal="10000", rate="8", term_periods=4, frequency=PaymentFrequency.QUARTERLY)
        )
        storage.close()

        reopened = LoanManager(SQLiteStorage(tmp_path / "loans.db"))
        loaded = reopened.get_loan(loan.id)

        assert loaded.terms.payment_frequency == PaymentFrequency.QUARTERLY
        assert loaded.summary.periodic_payment == Money(Decimal('2626.24'))
        assert loaded.created_at == loan.created_at
        reopened.storage.close()

    def test_stored_document(self, loan_manager, storage):
        loan = loan_manager.create_loan("PRJ-1", "Lender", make_terms())
        data = storage.load("loans", loan.id)

        assert data["terms"]["principal"] == "100000.00"
        assert data["terms"]["payment_frequency"] == "monthly"
        assert data["start_date"] == "2024-01-01"
        assert data["summary"]["periodic_payment"] == "8606.64"
        assert Loan.from_dict(data) == loan


class RecordingStorage(InMemoryStorage):
    """In-memory storage that records transaction boundaries"""

    def __init__(self, fail_on_save: bool = False):
        super().__init__()
        self.events = []
        self.fail_on_save = fail_on_save

    def begin_transaction(self):
        self.events.append("begin")

    def commit(self):
        self.events.append("commit")

    def rollback(self):
        self.events.append("rollback")

    def save(self, table, record_id, data):
        if self.fail_on_save:
            raise RuntimeError("disk full")
        super().save(table, record_id, data)


class TestLoanTransactions:
    """Test that loan writes run inside storage transactions"""

    def test_writes_are_committed(self):
        storage = RecordingStorage()
        manager = LoanManager(storage)

        loan = manager.create_loan("PRJ-1", "Lender", make_terms())
        manager.update_status(loan.id, LoanStatus.PAID_OFF)
        manager.delete_loan(loan.id)

        assert storage.events == ["begin", "commit"] * 3

    def test_failed_write_is_rolled_back(self):
        storage = RecordingStorage(fail_on_save=True)
        manager = LoanManager(storage)

        with pytest.raises(RuntimeError):
            manager.create_loan("PRJ-1", "Lender", make_terms())
        assert storage.events == ["begin", "rollback"]

    def test_sqlite_status_change_persists(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "loans.db")
        manager = LoanManager(storage)
        loan = manager.create_loan("PRJ-1", "Lender", make_terms())
        manager.update_status(loan.id, LoanStatus.DEFAULTED)
        storage.close()

        reopened = SQLiteStorage(tmp_path / "loans.db")
        assert LoanManager(reopened).get_loan(loan.id).status == LoanStatus.DEFAULTED
        reopened.close()
