import logging
import threading
from typing import Any, Dict, List, Optional

import httpx

from chatsift.services.config_service import config_service
from chatsift.services.file_store import ExtractedFile

logger = logging.getLogger(__name__)

INDEX_FIELDS = ["content_text^2", "transcription^2", "filename"]
KEYWORD_SEARCH_SIZE = 500

_client: Optional[httpx.Client] = None
_client_lock = threading.Lock()
_index_ready = False


class SearchIndexError(RuntimeError):
    pass


def _index_name() -> str:
    return config_service.get_search_config()["elasticsearch_index"]


def is_search_enabled() -> bool:
    return bool(config_service.get_search_config().get("elasticsearch_url"))


def get_client() -> Optional[httpx.Client]:
    """
    Returns the process-wide Elasticsearch client, or None when no URL is set.

    The client is built on first use under a lock and then reused for the life
    of the process; ``httpx.Client`` is safe for concurrent requests.
    """
    global _client
    if _client is not None:
        return _client
    cfg = config_service.get_search_config()
    url = cfg.get("elasticsearch_url")
    if not url:
        return None
    with _client_lock:
        if _client is None:
            kwargs: Dict[str, Any] = {
                "base_url": str(url).rstrip("/"),
                "timeout": cfg["index_timeout"],
                "headers": {"Content-Type": "application/json"},
            }
            username = cfg.get("elasticsearch_username")
            password = cfg.get("elasticsearch_password")
            if username and password:
                kwargs["auth"] = (username, password)
            if not cfg["elasticsearch_tls_reject_unauthorized"]:
                kwargs["verify"] = False
            _client = httpx.Client(**kwargs)
            logger.info("Elasticsearch client created for %s", kwargs["base_url"])
    return _client


def close_client() -> None:
    global _client, _index_ready
    with _client_lock:
        if _client is not None:
            _client.close()
        _client = None
        _index_ready = False


def _request(method: str, path: str, **kwargs) -> httpx.Response:
    es = get_client()
    if es is None:
        raise SearchIndexError("Search index is not configured")
    try:
        response = es.request(method, path, **kwargs)
    except httpx.HTTPError as e:
        raise SearchIndexError(f"{method} {path} failed: {e}") from e
    return response


def _raise_for_status(response: httpx.Response) -> None:
    if response.status_code >= 400:
        raise SearchIndexError(
            f"Search index returned {response.status_code} for {response.request.method} {response.request.url}"
        )


def ping() -> bool:
    """Cheap availability probe; never raises."""
    if not is_search_enabled():
        return False
    try:
        response = _request("HEAD", "/", timeout=min(2.0, config_service.get_search_config()["index_timeout"]))
    except SearchIndexError as e:
        logger.warning("Search index unreachable: %s", e)
        return False
    return response.status_code < 400


def ensure_index() -> None:
    global _index_ready
    if _index_ready or not is_search_enabled():
        return
    name = _index_name()
    response = _request("HEAD", f"/{name}")
    if response.status_code == 404:
        created = _request(
            "PUT",
            f"/{name}",
            json={
                "mappings": {
                    "properties": {
                        "id": {"type": "integer"},
                        "upload_id": {"type": "integer"},
                        "filename": {"type": "text"},
                        "file_type": {"type": "keyword"},
                        "content_text": {"type": "text"},
                        "transcription": {"type": "text"},
                        "extracted_date": {
                            "type": "date",
                            "format": "strict_date_optional_time||epoch_millis||yyyy-MM-dd HH:mm:ss",
                        },
                    }
                }
            },
        )
        # another worker may have created it in between
        if created.status_code != 400:
            _raise_for_status(created)
    else:
        _raise_for_status(response)
    _index_ready = True


def _document_body(file: ExtractedFile) -> Dict[str, Any]:
    return {
        "id": file.id,
        "upload_id": file.upload_id,
        "filename": file.filename,
        "file_type": file.file_type,
        "content_text": file.content_text,
        "transcription": file.transcription,
        "extracted_date": file.extracted_date,
    }


def index_extracted_file(file: ExtractedFile) -> None:
    if not is_search_enabled():
        return
    ensure_index()
    response = _request(
        "PUT",
        f"/{_index_name()}/_doc/{file.id}",
        json=_document_body(file),
        params={"refresh": "false"},
    )
    _raise_for_status(response)


def update_extracted_file(file: ExtractedFile) -> None:
    if not is_search_enabled():
        return
    ensure_index()
    response = _request(
        "POST",
        f"/{_index_name()}/_update/{file.id}",
        json={
            "doc": {"content_text": file.content_text, "transcription": file.transcription},
            "doc_as_upsert": True,
        },
        params={"refresh": "false"},
    )
    _raise_for_status(response)


def remove_extracted_file(file_id: int) -> None:
    if not is_search_enabled():
        return
    ensure_index()
    response = _request("DELETE", f"/{_index_name()}/_doc/{file_id}", params={"refresh": "false"})
    if response.status_code == 404:
        return
    _raise_for_status(response)


def remove_by_upload(upload_id: int) -> None:
    if not is_search_enabled():
        return
    ensure_index()
    response = _request(
        "POST",
        f"/{_index_name()}/_delete_by_query",
        json={"query": {"term": {"upload_id": upload_id}}},
        params={"refresh": "false"},
    )
    _raise_for_status(response)


def _search_ids(must: List[Dict[str, Any]], size: int) -> List[int]:
    ensure_index()
    response = _request(
        "POST",
        f"/{_index_name()}/_search",
        json={
            "size": size,
            "query": {"bool": {"must": must}} if must else {"match_all": {}},
            "_source": False,
        },
    )
    _raise_for_status(response)
    try:
        hits = response.json().get("hits", {}).get("hits", []) or []
        return [int(h["_id"]) for h in hits]
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise SearchIndexError(f"Malformed search response: {e}") from e


def search_ids_by_keyword(keyword: str, file_type: Optional[str] = None) -> List[int]:
    if not is_search_enabled():
        return []
    must: List[Dict[str, Any]] = []
    if keyword:
        must.append({
            "multi_match": {
                "query": keyword,
                "fields": INDEX_FIELDS,
                "type": "best_fields",
                "operator": "and",
            }
        })
    if file_type:
        must.append({"term": {"file_type": file_type}})
    return _search_ids(must, KEYWORD_SEARCH_SIZE)


def search_ids_by_fuzzy_keyword(keyword: str, file_type: Optional[str] = None, limit: int = 50) -> List[int]:
    """Ids ranked by the index's own relevance; edit-distance tolerant, any term may match."""
    if not is_search_enabled():
        return []
    must: List[Dict[str, Any]] = []
    if keyword:
        must.append({
            "multi_match": {
                "query": keyword,
                "fields": INDEX_FIELDS,
                "type": "best_fields",
                "fuzziness": "AUTO",
                "operator": "or",
            }
        })
    if file_type:
        must.append({"term": {"file_type": file_type}})
    return _search_ids(must, limit)
