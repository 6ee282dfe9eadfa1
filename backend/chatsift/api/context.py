import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import ValidationError

from chatsift.models import SearchRequest, SearchResponse
from chatsift.services.file_store import StorageError
from chatsift.services.retrieval import run_context_search

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=SearchResponse)
def search_context(
    q: Optional[str] = None,
    upload_id: Optional[int] = Query(None, alias="uploadId"),
    window: Optional[str] = None,
    max_results: Optional[str] = Query(None, alias="max"),
):
    try:
        request = SearchRequest(query=q, scope=upload_id, window=window, max_results=max_results)
    except ValidationError as e:
        errors = e.errors()
        detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        raise HTTPException(status_code=400, detail=detail.removeprefix("Value error, "))

    try:
        return run_context_search(request)
    except StorageError as e:
        logger.exception("Context search failed")
        raise HTTPException(status_code=500, detail=str(e))
