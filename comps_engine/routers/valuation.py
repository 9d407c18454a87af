from fastapi import APIRouter, Depends

from ..schemas import ArvRequest, ArvResponse, ValidateRequest, ValidationResponse
from ..services.valuation_service import ValuationService
from .comps import service_dep

router = APIRouter()


@router.post("/valuation/arv", response_model=ArvResponse)
async def post_arv(body: ArvRequest, svc: ValuationService = Depends(service_dep)):
    estimate = await svc.estimate_arv(
        body.identity(),
        subject=body.subject.profile() if body.subject else None,
        purchase_price=body.purchase_price,
        force_refresh=body.force_refresh,
    )
    return estimate.to_dict()


@router.post("/valuation/validate", response_model=ValidationResponse)
async def post_validate(body: ValidateRequest, svc: ValuationService = Depends(service_dep)):
    # Advisory only: always 200, problems come back as warnings
    result = await svc.validate_valuation(body.value, body.reference())
    return result.to_dict()
