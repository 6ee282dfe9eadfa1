import logging
import mimetypes
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from chatsift.services import search_index
from chatsift.services.file_store import ExtractedFile, file_store
from chatsift.services.search_index import SearchIndexError

logger = logging.getLogger(__name__)

router = APIRouter()


class TextDocumentCreate(BaseModel):
    filename: str
    content: str
    upload_id: Optional[int] = None
    upload_name: Optional[str] = None


@router.get("/")
def list_uploads():
    return file_store.list_uploads()


@router.get("/{upload_id}/files")
def list_upload_files(upload_id: int):
    if not file_store.get_upload(upload_id):
        raise HTTPException(status_code=404, detail="Upload not found")
    return file_store.list_files_by_upload(upload_id)


@router.post("/text", response_model=ExtractedFile)
def create_text_document(doc: TextDocumentCreate):
    filename = doc.filename.strip()
    if not filename:
        raise HTTPException(status_code=400, detail="filename is required")
    size = len(doc.content.encode("utf-8"))

    upload_id = doc.upload_id
    if upload_id is None:
        upload_id = file_store.create_upload(filename, doc.upload_name or filename, size)
    elif not file_store.get_upload(upload_id):
        raise HTTPException(status_code=404, detail="Upload not found")

    file_id = file_store.create_extracted_file(
        upload_id,
        filename,
        filename,
        "text",
        size,
        mimetypes.guess_type(filename)[0] or "text/plain",
        content_text=doc.content,
    )
    total = len(file_store.list_files_by_upload(upload_id))
    file_store.update_upload_status(upload_id, "completed", total)

    created = file_store.get_extracted_file(file_id)
    try:
        search_index.index_extracted_file(created)
    except SearchIndexError as e:
        # the store is authoritative; local search still works without the index
        logger.warning("Failed to index file %s: %s", file_id, e)
    return created


@router.delete("/{upload_id}")
def delete_upload(upload_id: int):
    if not file_store.delete_upload(upload_id):
        raise HTTPException(status_code=404, detail="Upload not found")
    try:
        search_index.remove_by_upload(upload_id)
    except SearchIndexError as e:
        logger.warning("Failed to remove upload %s from index: %s", upload_id, e)
    return {"status": "success"}
