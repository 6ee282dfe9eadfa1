import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from chatsift.services import search_index
from chatsift.services.file_store import (
    ExtractedFile,
    FileFilters,
    FileType,
    StorageError,
    TranscriptionStatus,
    file_store,
)
from chatsift.services.search_index import SearchIndexError

logger = logging.getLogger(__name__)

router = APIRouter()


class FileContentUpdate(BaseModel):
    content_text: Optional[str] = None
    transcription: Optional[str] = None
    transcription_status: Optional[TranscriptionStatus] = None


def _keyword_ids(keyword: Optional[str], file_type: Optional[str]) -> Optional[list[int]]:
    """Keyword hits from the external index, or None to use the local FTS filter."""
    if not keyword or not search_index.is_search_enabled():
        return None
    try:
        return search_index.search_ids_by_keyword(keyword, file_type)
    except SearchIndexError as e:
        logger.warning("Index keyword search failed, using local filter: %s", e)
        return None


@router.get("/")
def list_files(
    action: Optional[str] = None,
    keyword: Optional[str] = None,
    file_type: Optional[FileType] = Query(None, alias="fileType"),
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
    time_from: Optional[str] = Query(None, alias="timeFrom"),
    time_to: Optional[str] = Query(None, alias="timeTo"),
    upload_id: Optional[int] = Query(None, alias="uploadId"),
):
    try:
        if action == "stats":
            return file_store.get_statistics()
        if action == "uploads":
            return file_store.list_uploads()

        filters = FileFilters(
            keyword=keyword,
            file_type=file_type,
            date_from=date_from,
            date_to=date_to,
            time_from=time_from,
            time_to=time_to,
            upload_id=upload_id,
        )
        files = file_store.search_files(filters, ids=_keyword_ids(keyword, file_type))
    except StorageError as e:
        logger.exception("Listing files failed")
        raise HTTPException(status_code=500, detail=str(e))
    return {
        "files": files,
        "total": len(files),
        "filters": filters.model_dump(exclude_none=True),
    }


@router.get("/{file_id}")
def get_file(file_id: int, action: Optional[str] = None):
    f = file_store.get_extracted_file(file_id)
    if not f:
        raise HTTPException(status_code=404, detail="File not found")
    if action == "content":
        return {
            "id": f.id,
            "filename": f.filename,
            "file_type": f.file_type,
            "content": f.content_text or f.transcription or "",
        }
    return f


@router.delete("/{file_id}")
def delete_file(file_id: int):
    if not file_store.delete_extracted_file(file_id):
        raise HTTPException(status_code=404, detail="File not found")
    try:
        search_index.remove_extracted_file(file_id)
    except SearchIndexError as e:
        logger.warning("Failed to remove file %s from index: %s", file_id, e)
    return {"status": "success"}


@router.put("/{file_id}", response_model=ExtractedFile)
def update_file_content(file_id: int, update: FileContentUpdate):
    if update.content_text is None and update.transcription is None:
        raise HTTPException(status_code=400, detail="content_text or transcription is required")
    if not file_store.get_extracted_file(file_id):
        raise HTTPException(status_code=404, detail="File not found")

    if update.content_text is not None:
        file_store.update_content_text(file_id, update.content_text)
    if update.transcription is not None:
        file_store.update_transcription(file_id, update.transcription, update.transcription_status or "completed")

    f = file_store.get_extracted_file(file_id)
    try:
        search_index.update_extracted_file(f)
    except SearchIndexError as e:
        logger.warning("Failed to re-index file %s: %s", file_id, e)
    return f
