"""Case deduplication endpoints: search, decision, history, clusters."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from caseflow.access import Principal
from caseflow.api.deps import get_principal, get_service, run_blocking, run_write
from caseflow.dedup.service import DeduplicationService
from caseflow.errors import (
    ClustersFailed,
    DecisionFailed,
    DeduplicationError,
    HistoryFailed,
    SearchFailed,
    StoreError,
)

router = APIRouter()
logger = logging.getLogger(__name__)


# Fields stay untyped; the domain layer validates them and a non-string
# criterion counts as absent rather than a 400.

class SearchRequest(BaseModel):
    customerName: Any = None
    panNumber: Any = None
    customerPhone: Any = None
    aadhaarNumber: Any = None
    bankAccountNumber: Any = None
    customerEmail: Any = None


class DecisionRequest(BaseModel):
    decision: Any = None
    searchCriteria: Any = None
    duplicatesFound: Any = None
    searchToken: str | None = None


async def _call(
    request: Request, failure: type[StoreError], fn, *args, runner=run_blocking, **kwargs
):
    """Run ``fn`` off-loop; anything that is not a domain error becomes ``failure``."""
    try:
        return await runner(request, fn, *args, **kwargs)
    except DeduplicationError:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error in {fn.__name__}: {e}")
        raise failure() from e


@router.post("/deduplication/search")
async def search_duplicates(
    body: SearchRequest,
    request: Request,
    principal: Principal = Depends(get_principal),
    service: DeduplicationService = Depends(get_service),
):
    """Search existing cases that may belong to the same applicant."""
    result = await _call(
        request, SearchFailed, service.search, principal, body.model_dump()
    )
    return {"success": True, "data": result.to_dict()}


@router.post("/deduplication/decision")
async def record_decision(
    body: DecisionRequest,
    request: Request,
    principal: Principal = Depends(get_principal),
    service: DeduplicationService = Depends(get_service),
):
    """Record the operator's CREATE_NEW / USE_EXISTING / MERGE_CASES decision."""
    entry = await _call(
        request,
        DecisionFailed,
        service.record_decision,
        principal,
        body.decision,
        body.searchCriteria,
        body.duplicatesFound,
        body.searchToken,
        runner=run_write,
    )
    return {
        "success": True,
        "message": "Deduplication decision recorded successfully",
        "data": entry.to_dict(),
    }


@router.get("/deduplication/clusters")
async def duplicate_clusters(
    request: Request,
    page: int = Query(1),
    limit: int | None = Query(None),
    principal: Principal = Depends(get_principal),
    service: DeduplicationService = Depends(get_service),
):
    """Admin view of case groups sharing an identifier."""
    result = await _call(request, ClustersFailed, service.clusters, principal, page, limit)
    return {"success": True, "data": result.to_dict()}


@router.get("/{case_id}/deduplication/history")
async def deduplication_history(
    case_id: str,
    request: Request,
    principal: Principal = Depends(get_principal),
    service: DeduplicationService = Depends(get_service),
):
    entries = await _call(request, HistoryFailed, service.history, principal, case_id)
    return {"success": True, "data": [e.to_dict() for e in entries]}
