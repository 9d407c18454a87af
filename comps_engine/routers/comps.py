import json

from fastapi import APIRouter, Depends, Header, Request, Response

from ..core.utils import weak_etag
from ..schemas import (
    CacheClearResponse, CacheInvalidateResponse, CacheStatsResponse, CompsRequest, CompsResponse,
    PropertyIn, QuotaResponse,
)
from ..services.result_cache import comps_cache_key
from ..services.valuation_service import ValuationService

router = APIRouter()


def service_dep(request: Request) -> ValuationService:
    # Built once by the app factory; holds the in-process stores
    return request.app.state.service


@router.post("/comps", response_model=CompsResponse)
async def post_comps(
    body: CompsRequest,
    response: Response,
    if_none_match: str | None = Header(default=None),
    svc: ValuationService = Depends(service_dep),
):
    result = await svc.fetch_comparables(body.identity(), force_refresh=body.force_refresh)
    payload = result.to_dict()
    etag = weak_etag(json.dumps(payload["comparables"], separators=(",", ":")).encode("utf-8"))
    if if_none_match and if_none_match == etag:
        return Response(status_code=304, headers={"ETag": etag})
    payload["etag"] = etag
    response.headers["ETag"] = etag
    return payload


@router.get("/quota", response_model=QuotaResponse)
def get_quota(svc: ValuationService = Depends(service_dep)):
    return svc.get_quota_report()


@router.delete("/cache/comps", response_model=CacheClearResponse)
def clear_comps_cache(svc: ValuationService = Depends(service_dep)):
    return {"removed": svc.clear_comparables_cache()}


@router.post("/cache/comps/invalidate", response_model=CacheInvalidateResponse)
def invalidate_comps(body: PropertyIn, svc: ValuationService = Depends(service_dep)):
    identity = body.identity()
    return {"key": comps_cache_key(identity), "removed": svc.invalidate_comparables(identity)}


@router.post("/cache/comps/stats", response_model=CacheStatsResponse)
def comps_cache_stats(body: PropertyIn, svc: ValuationService = Depends(service_dep)):
    identity = body.identity()
    return {"key": comps_cache_key(identity), **svc.comparables_cache_stats(identity)}
