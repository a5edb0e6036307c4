"""Central-zone pages that exist outside any tenant."""

from __future__ import annotations

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

router = APIRouter(tags=["central"])


@router.get("/tenant-not-found")
async def tenant_not_found(
    domain: str | None = Query(default=None),
    subdomain: str | None = Query(default=None),
):
    """Landing page for hosts that do not belong to any tenant."""
    return JSONResponse(
        status_code=404,
        content={
            "detail": "No workspace is registered for this domain",
            "requested_domain": domain,
            "requested_subdomain": subdomain,
        },
    )
