from dataclasses import asdict

from fastapi import APIRouter, Depends

from app.api.deps import require_admin
from app.schemas.billing import CycleRunRead, FeeRepairResult
from app.services import billing as billing_service

router = APIRouter(
    prefix="/jobs", tags=["jobs"], dependencies=[Depends(require_admin)]
)


@router.post("/fee-repair", response_model=FeeRepairResult)
def run_fee_repair():
    return billing_service.repair_fee_consistency()


@router.post("/invoice-cycle", response_model=CycleRunRead)
def run_invoice_cycle():
    return asdict(billing_service.run_invoice_cycle())
