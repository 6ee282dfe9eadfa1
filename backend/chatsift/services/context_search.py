import re
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from chatsift.models import ContextResult, Document, Line, TokenMatch

LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")
# Basic Latin letters, digits, underscore and the Latin-1 accented letters (à-ö, ø-ÿ)
WORD_RE = re.compile(r"[0-9a-zà-öø-ÿ_]+")

FUZZY_QUERY_CAP = 8
FUZZY_RATIO = 0.3


@dataclass
class AggregateResult:
    results: List[ContextResult] = field(default_factory=list)
    primary: Optional[Document] = None
    scanned_documents: int = 0
    timed_out: bool = False


def normalize_lines(body: Optional[str]) -> List[Line]:
    if not body:
        return []
    lines: List[Line] = []
    for piece in LINE_BREAK_RE.split(body):
        text = piece.strip()
        if not text:
            continue
        lines.append(Line(num=len(lines) + 1, text=text))
    return lines


def levenshtein(a: str, b: str) -> int:
    rows = len(a) + 1
    cols = len(b) + 1
    dp = [[0] * cols for _ in range(rows)]
    for i in range(rows):
        dp[i][0] = i
    for j in range(cols):
        dp[0][j] = j
    for i in range(1, rows):
        for j in range(1, cols):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            dp[i][j] = min(
                dp[i - 1][j] + 1,
                dp[i][j - 1] + 1,
                dp[i - 1][j - 1] + cost,
            )
    return dp[rows - 1][cols - 1]


def max_distance(query: str) -> int:
    """Edit budget for a query: grows with length up to 8 chars, never below 1."""
    return max(1, int(min(len(query), FUZZY_QUERY_CAP) * FUZZY_RATIO))


def tokenize(text: str) -> List[str]:
    return [t for t in WORD_RE.findall(text.lower()) if t]


def is_fuzzy_match(line: str, query: str) -> bool:
    q = (query or "").strip().lower()
    if not q:
        return False
    lower = (line or "").lower()
    if q in lower:
        return True

    max_dist = max_distance(q)
    for token in tokenize(lower):
        if abs(len(token) - len(q)) > max_dist:
            continue
        if levenshtein(token, q) <= max_dist:
            return True
    return False


def _lower_with_offsets(line: str):
    """
    Lower-cases ``line`` one character at a time and returns the lowered text
    with, for every lowered position, the index of its source character.

    ``str.lower()`` may expand a character (``"İ"`` becomes two code points),
    so offsets found in the lowered text cannot slice ``line`` directly.
    """
    pieces: List[str] = []
    origin: List[int] = []
    for i, ch in enumerate(line):
        low = ch.lower()
        pieces.append(low)
        origin.extend([i] * len(low))
    return "".join(pieces), origin


def _span(line: str, origin: List[int], start: int, end: int, distance: int) -> TokenMatch:
    src_start = origin[start]
    src_end = origin[end - 1] + 1
    return TokenMatch(token=line[src_start:src_end], start=src_start, end=src_end, distance=distance)


def best_matching_token(line: str, query: str) -> Optional[TokenMatch]:
    """
    Locates the span of ``line`` that best matches ``query``.

    A literal (case-insensitive) occurrence wins with distance 0. Otherwise the
    word token with the smallest edit distance within the fuzzy budget is
    returned; ties go to the leftmost token. Offsets index into ``line``.
    """
    q = (query or "").strip().lower()
    if not q or not line:
        return None
    lower, origin = _lower_with_offsets(line)
    idx = lower.find(q)
    if idx != -1:
        return _span(line, origin, idx, idx + len(q), 0)

    max_dist = max_distance(q)
    best: Optional[TokenMatch] = None
    for m in WORD_RE.finditer(lower):
        token = m.group(0)
        if abs(len(token) - len(q)) > max_dist:
            continue
        dist = levenshtein(token, q)
        if dist > max_dist:
            continue
        if best is None or dist < best.distance:
            best = _span(line, origin, m.start(), m.end(), dist)
    return best


def build_context(lines: List[Line], match_index: int, window: int) -> ContextResult:
    if match_index < 0 or match_index >= len(lines):
        raise IndexError(f"match_index {match_index} out of range for {len(lines)} lines")
    if window < 0:
        raise ValueError("window must be >= 0")
    start = max(0, match_index - window)
    end = min(len(lines) - 1, match_index + window)
    return ContextResult(
        index=match_index,
        before=list(lines[start:match_index]),
        match=lines[match_index],
        after=list(lines[match_index + 1 : end + 1]),
    )


def find_contexts(lines: List[Line], query: str, window: int, max_results: int) -> List[ContextResult]:
    matches: List[ContextResult] = []
    if max_results <= 0:
        return matches
    for i, line in enumerate(lines):
        if not is_fuzzy_match(line.text, query):
            continue
        ctx = build_context(lines, i, window)
        ctx.highlight = best_matching_token(line.text, query)
        matches.append(ctx)
        if len(matches) >= max_results:
            break
    return matches


def search_documents(
    documents: Iterable[Document],
    query: str,
    window: int,
    max_results: int,
    *,
    deadline: Optional[float] = None,
) -> AggregateResult:
    """
    Scans ``documents`` in the given order and collects context results.

    The budget is global: once ``max_results`` results exist the scan stops,
    even in the middle of a document. ``deadline`` is a ``time.monotonic()``
    timestamp checked between documents only, so a document is either fully
    scanned or not at all.
    """
    out = AggregateResult()
    for doc in documents:
        remaining = max_results - len(out.results)
        if remaining <= 0:
            break
        if deadline is not None and time.monotonic() > deadline:
            out.timed_out = True
            break
        if not doc.text:
            continue
        out.scanned_documents += 1
        contexts = find_contexts(normalize_lines(doc.text), query, window, remaining)
        if not contexts:
            continue
        if out.primary is None:
            out.primary = doc
        for ctx in contexts:
            ctx.document_id = doc.id
            ctx.filename = doc.filename
            ctx.upload_id = doc.upload_id
        out.results.extend(contexts)
    return out
