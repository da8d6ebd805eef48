"""
Loan endpoints
"""

from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..amortization import calculate
from ..currency import Currency
from ..exceptions import LoanCalculationError
from ..loans import Loan, LoanStatus, LoanType
from .dependencies import LendingSystem, get_lending_system
from .schemas import CreateLoanRequest, LoanTermsModel, UpdateLoanRequest


router = APIRouter()
calculator_router = APIRouter()


def _parse_status(value: str) -> LoanStatus:
    try:
        return LoanStatus(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid loan status: {value}") from None


def _loan_response(loan: Loan, include_schedule: bool = False) -> Dict[str, Any]:
    summary = loan.summary
    result = {
        "id": loan.id,
        "project_id": loan.project_id,
        "lender_name": loan.lender_name,
        "loan_type": loan.loan_type.value,
        "status": loan.status.value,
        "notes": loan.notes,
        **loan.terms.to_dict(),
        "periodic_payment": str(summary.periodic_payment.amount),
        "total_interest": str(summary.total_interest.amount),
        "end_date": summary.end_date.isoformat(),
        "created_at": loan.created_at.isoformat(),
        "updated_at": loan.updated_at.isoformat()
    }
    if include_schedule:
        result["schedule"] = loan.schedule().to_list()
    return result


@calculator_router.post("/calculate")
async def calculate_loan(
    request: LoanTermsModel,
    schedule: bool = Query(False, description="Include the full payment schedule")
):
    """Payment, total interest and end date for loan terms"""
    try:
        terms = request.to_loan_terms()
    except LoanCalculationError:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    calculation = calculate(terms, include_schedule=schedule)
    result = {**terms.to_dict(), **calculation.summary.to_dict()}
    if calculation.schedule is not None:
        result["schedule"] = calculation.schedule.to_list()
    return result


@router.get("")
async def list_loans(
    project_id: str,
    status_filter: Optional[str] = Query(None, alias="status", description="Only loans in this status"),
    system: LendingSystem = Depends(get_lending_system)
):
    """List the loans of a project"""
    loan_status = _parse_status(status_filter) if status_filter else None
    loans = system.loan_manager.list_project_loans(project_id, loan_status)
    return {"loans": [_loan_response(loan) for loan in loans]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    project_id: str,
    request: CreateLoanRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Create a loan for a project"""
    try:
        loan_type = LoanType(request.loan_type)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid loan type: {request.loan_type}") from None

    try:
        terms = request.terms.to_loan_terms()
        loan = system.loan_manager.create_loan(
            project_id=project_id,
            lender_name=request.lender_name,
            terms=terms,
            loan_type=loan_type,
            notes=request.notes
        )
    except LoanCalculationError:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return _loan_response(loan)


@router.get("/totals")
async def get_project_totals(
    project_id: str,
    currency: str = Query("USD", description="Currency of the loans to total"),
    as_of: Optional[date] = Query(None, description="Position date for balances and amounts paid (defaults to today)"),
    system: LendingSystem = Depends(get_lending_system)
):
    """Totals across the project's active loans"""
    try:
        loan_currency = Currency[currency.upper()]
    except KeyError:
        raise HTTPException(status_code=400, detail=f"Unsupported currency: {currency}") from None
    return system.loan_manager.project_totals(project_id, loan_currency, as_of).to_dict()


@router.get("/{loan_id}")
async def get_loan(
    project_id: str,
    loan_id: str,
    schedule: bool = Query(False, description="Include the full payment schedule"),
    system: LendingSystem = Depends(get_lending_system)
):
    """Get loan details"""
    loan = system.loan_manager.require_loan(loan_id, project_id)
    return _loan_response(loan, include_schedule=schedule)


@router.put("/{loan_id}")
async def update_loan(
    project_id: str,
    loan_id: str,
    request: UpdateLoanRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Update loan status"""
    loan = system.loan_manager.update_status(loan_id, _parse_status(request.status), project_id)
    return _loan_response(loan)


@router.delete("/{loan_id}")
async def delete_loan(
    project_id: str,
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Delete a loan"""
    system.loan_manager.delete_loan(loan_id, project_id)
    return {"loan_id": loan_id, "message": "Loan deleted successfully"}


@router.get("/{loan_id}/position")
async def get_loan_position(
    project_id: str,
    loan_id: str,
    as_of: Optional[date] = Query(None, description="Position date (defaults to today)"),
    system: LendingSystem = Depends(get_lending_system)
):
    """Scheduled balance and next payment as of a date"""
    return system.loan_manager.get_position(loan_id, as_of, project_id).to_dict()
