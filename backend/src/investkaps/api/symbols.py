"""Tradable symbol search API router"""

from fastapi import APIRouter, Depends, Query

from investkaps.auth.dependencies import require_admin
from investkaps.data.symbols import catalog
from investkaps.errors import BadRequestError

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/search")
def search_symbols(
    q: str = Query(""),
    limit: int = Query(50, ge=1, le=500),
) -> dict:
    if not q.strip():
        raise BadRequestError("Search query is required")
    results = catalog.search(q, limit)
    return {"success": True, "count": len(results), "data": results}


@router.get("")
def list_symbols(
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=1000),
) -> dict:
    return {"success": True, **catalog.page(page, limit)}


@router.post("/reload")
def reload_symbols() -> dict:
    catalog.clear()
    count = len(catalog.load())
    return {"success": True, "message": "Symbols reloaded", "count": count}
