import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from chatsift.models import Document, FileRef, SearchRequest, SearchResponse
from chatsift.observability import log_search
from chatsift.services import search_index
from chatsift.services.config_service import config_service
from chatsift.services.context_search import search_documents
from chatsift.services.file_store import FileStore, StorageError, file_store
from chatsift.services.search_index import SearchIndexError

logger = logging.getLogger(__name__)


@dataclass
class CandidateSet:
    documents: List[Document] = field(default_factory=list)
    backend: str = "none"


class CandidateBackend(ABC):
    """
    A source of candidate documents for a context search.

    - name: identifier reported back in the response
    - available: cheap check, done once per request, before candidates()
    - candidates: ordered documents to scan; an empty list means "nothing usable"
    """
    name: str

    def __init__(self, store: Optional[FileStore] = None):
        self.store = store or file_store

    def available(self) -> bool:
        return True

    @abstractmethod
    def candidates(self, query: str, scope: Optional[int] = None) -> List[Document]:
        pass


class IndexBackend(CandidateBackend):
    name = "index"

    def available(self) -> bool:
        return search_index.is_search_enabled() and search_index.ping()

    def candidates(self, query: str, scope: Optional[int] = None) -> List[Document]:
        cfg = config_service.get_search_config()
        ids = search_index.search_ids_by_fuzzy_keyword(query, "text", cfg["index_candidate_limit"])
        usable_limit = cfg["index_usable_limit"]
        docs: List[Document] = []
        for doc_id in ids:
            if len(docs) >= usable_limit:
                break
            try:
                doc = self.store.get_document(doc_id)
            except StorageError as e:
                logger.warning("Skipping candidate %s, read failed: %s", doc_id, e)
                continue
            if doc is None or not doc.text:
                continue
            if scope is not None and doc.upload_id != scope:
                continue
            docs.append(doc)
        logger.debug("Index returned %d ids, %d usable", len(ids), len(docs))
        return docs


class LocalBackend(CandidateBackend):
    name = "local"

    def candidates(self, query: str, scope: Optional[int] = None) -> List[Document]:
        docs = self.store.get_documents_by_type("text", scope=scope, limit=1)
        return [d for d in docs if d.text]


def default_backends(store: Optional[FileStore] = None) -> List[CandidateBackend]:
    return [IndexBackend(store), LocalBackend(store)]


def resolve_candidate_documents(
    query: str,
    scope: Optional[int] = None,
    *,
    backends: Optional[List[CandidateBackend]] = None,
) -> CandidateSet:
    """
    Tries each backend in order and returns the first non-empty candidate set.

    Index failures only demote the request to the next backend. The last
    backend is the local store; its errors propagate since nothing follows it.
    """
    backends = backends if backends is not None else default_backends()
    for i, backend in enumerate(backends):
        is_last = i == len(backends) - 1
        try:
            if not backend.available():
                logger.debug("Backend %s not available", backend.name)
                continue
            docs = backend.candidates(query, scope)
        except SearchIndexError as e:
            logger.warning("Backend %s failed, falling back: %s", backend.name, e)
            continue
        except StorageError:
            if is_last:
                raise
            logger.warning("Backend %s storage read failed, falling back", backend.name, exc_info=True)
            continue
        if docs:
            logger.info("Backend %s produced %d candidate documents", backend.name, len(docs))
            return CandidateSet(documents=docs, backend=backend.name)
    return CandidateSet()


def run_context_search(
    request: SearchRequest,
    *,
    backends: Optional[List[CandidateBackend]] = None,
) -> SearchResponse:
    started = time.monotonic()
    candidates = resolve_candidate_documents(request.query, request.scope, backends=backends)
    timeout_s = config_service.get_search_config()["search_timeout"]
    aggregate = search_documents(
        candidates.documents,
        request.query,
        request.window,
        request.max_results,
        deadline=started + timeout_s,
    )
    log_search(
        request.query,
        candidates.backend,
        len(aggregate.results),
        aggregate.scanned_documents,
        (time.monotonic() - started) * 1000,
        timed_out=aggregate.timed_out,
    )
    primary = aggregate.primary
    if primary is None and candidates.documents:
        # single-document framing: report the scanned document even without hits
        primary = candidates.documents[0]
    return SearchResponse(
        file=FileRef.from_document(primary) if primary else None,
        query=request.query,
        window=request.window,
        total_matches=len(aggregate.results),
        results=aggregate.results,
        backend=candidates.backend,
    )
