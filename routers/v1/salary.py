# routers/v1/salary.py
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from deps.auth import get_current_user
from deps.authz import require_roles
from models import User, UserRole
from schemas import SalaryCalculate, SalaryPay, SalaryRecordOut, UserBrief
from services.salary import calculate_salaries, list_records, mark_paid, technician_history
from utils.responses import ok

router = APIRouter(prefix="/salary", tags=["salary"])


@router.get("/records")
def records(
    period: Optional[str] = None,
    user_id: Optional[int] = None,
    is_paid: Optional[bool] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows, totals = list_records(db, user.organization_id, period, user_id, is_paid)
    return ok({"records": [SalaryRecordOut.model_validate(r) for r in rows], "totals": totals})


@router.post("/calculate")
def calculate(
    payload: SalaryCalculate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(UserRole.OWNER.value, UserRole.ADMIN.value, UserRole.ACCOUNTANT.value)),
):
    rows = calculate_salaries(db, user.organization_id, payload.period, payload.user_id)
    return ok([SalaryRecordOut.model_validate(r) for r in rows])


@router.patch("/pay")
def pay(
    payload: SalaryPay,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(UserRole.OWNER.value, UserRole.ADMIN.value)),
):
    n = mark_paid(db, user.organization_id, payload.ids)
    return ok({"updated": n}, message="Salary marked as paid")


@router.get("/technician/{tech_id}")
def technician(
    tech_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    tech, rows = technician_history(db, user.organization_id, tech_id)
    return ok({
        "user": UserBrief.model_validate(tech),
        "records": [SalaryRecordOut.model_validate(r) for r in rows],
    })
