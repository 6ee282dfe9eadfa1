from dataclasses import dataclass
from typing import List, Optional, Any
from pydantic import BaseModel, Field, field_validator

DEFAULT_WINDOW = 5
MAX_WINDOW = 20
DEFAULT_MAX_RESULTS = 20
MAX_RESULTS_LIMIT = 100


@dataclass(frozen=True)
class Document:
    id: int
    filename: str
    upload_id: int
    text: Optional[str] = None
    extracted_date: Optional[str] = None


class Line(BaseModel):
    num: int
    text: str


class TokenMatch(BaseModel):
    token: str
    start: int
    end: int
    distance: int = 0


class ContextResult(BaseModel):
    index: int
    before: List[Line] = []
    match: Line
    after: List[Line] = []
    document_id: Optional[int] = None
    filename: Optional[str] = None
    upload_id: Optional[int] = None
    highlight: Optional[TokenMatch] = None


class FileRef(BaseModel):
    id: int
    filename: str
    upload_id: int

    @classmethod
    def from_document(cls, doc: Document) -> "FileRef":
        return cls(id=doc.id, filename=doc.filename, upload_id=doc.upload_id)


def _clamp_int(value: Any, default: int, lower: int, upper: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    return max(lower, min(upper, n))


class SearchRequest(BaseModel):
    query: str
    scope: Optional[int] = None
    window: int = DEFAULT_WINDOW
    max_results: int = DEFAULT_MAX_RESULTS

    @field_validator("query", mode="before")
    @classmethod
    def _require_query(cls, v: Any) -> str:
        q = str(v if v is not None else "").strip()
        if not q:
            raise ValueError("Parameter q is required")
        return q

    @field_validator("window", mode="before")
    @classmethod
    def _clamp_window(cls, v: Any) -> int:
        return _clamp_int(v, DEFAULT_WINDOW, 0, MAX_WINDOW)

    @field_validator("max_results", mode="before")
    @classmethod
    def _clamp_max_results(cls, v: Any) -> int:
        return _clamp_int(v, DEFAULT_MAX_RESULTS, 1, MAX_RESULTS_LIMIT)


class SearchResponse(BaseModel):
    file: Optional[FileRef] = None
    query: str
    window: int
    total_matches: int = 0
    results: List[ContextResult] = Field(default_factory=list)
    backend: str = "none"
