"""Service for searching, ranking and sorting notes."""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from bearnotes.config import config
from bearnotes.models.schema import (
    Note,
    Pagination,
    SearchFilter,
    SortField,
    SortOrder,
    ensure_timezone_aware,
)
from bearnotes.services.note_service import NoteService

logger = logging.getLogger(__name__)

# Characters of context kept on each side of a content match
CONTEXT_RADIUS = 40


@dataclass
class SearchResult:
    """A search result with a note and its relevance score."""

    note: Note
    score: float
    matched_terms: Set[str]
    matched_context: str


@dataclass
class SearchPage:
    """One page of ranked search results."""

    results: List[SearchResult]
    pagination: Pagination


def _query_terms(query: Optional[str]) -> List[str]:
    """Distinct lowercase whitespace-separated words, in first-seen order."""
    if not query:
        return []
    return list(dict.fromkeys(query.lower().split()))


def _matched_context(note: Note, terms: List[str]) -> str:
    title_lower = note.title.lower()
    for term in terms:
        if term in title_lower:
            return f"Title: {note.title}"
    content_lower = note.content.lower()
    for term in terms:
        index = content_lower.find(term)
        if index >= 0:
            start = max(0, index - CONTEXT_RADIUS)
            end = min(len(note.content), index + len(term) + CONTEXT_RADIUS)
            return f"Content: ...{note.content[start:end]}..."
    return ""


class SearchService:
    """Search and sort over an owner's notes.

    The pure helpers (``search_by_title``, ``sort_by_date``, ``rank``, ...)
    work on any list of notes; ``full_text_search`` and ``advanced_search``
    load the owner's notes through the NoteService first.
    """

    def __init__(self, note_service: Optional[NoteService] = None):
        self.note_service = note_service or NoteService()

    # =========================================================================
    # Substring search
    # =========================================================================

    @staticmethod
    def search_by_title(query: str, notes: List[Note]) -> List[Note]:
        """Notes whose title contains ``query`` (case-insensitive), input order kept."""
        needle = (query or "").lower()
        return [note for note in notes if needle in note.title.lower()]

    @staticmethod
    def search_by_content(query: str, notes: List[Note]) -> List[Note]:
        """Notes whose content contains ``query`` (case-insensitive), input order kept."""
        needle = (query or "").lower()
        return [note for note in notes if needle in note.content.lower()]

    # =========================================================================
    # Sorting (stable)
    # =========================================================================

    @staticmethod
    def sort_by_date(
        notes: List[Note],
        order: SortOrder = SortOrder.DESC,
        field: SortField = SortField.CREATED_AT,
    ) -> List[Note]:
        if field not in (SortField.CREATED_AT, SortField.UPDATED_AT):
            raise ValueError(f"Cannot sort by date on field '{field}'")
        attribute = SortField(field).value
        return sorted(
            notes,
            key=lambda note: getattr(note, attribute),
            reverse=SortOrder(order) == SortOrder.DESC,
        )

    @staticmethod
    def sort_by_title(notes: List[Note], order: SortOrder = SortOrder.ASC) -> List[Note]:
        return sorted(
            notes,
            key=lambda note: note.title.casefold(),
            reverse=SortOrder(order) == SortOrder.DESC,
        )

    # =========================================================================
    # Relevance
    # =========================================================================

    @staticmethod
    def relevance_score(note: Note, query: str) -> float:
        """Score a note against a query.

        Each distinct query word adds 1.0 if it occurs in the title and
        another 1.0 if it occurs in the content (substring, case-insensitive).
        """
        title_lower = note.title.lower()
        content_lower = note.content.lower()
        score = 0.0
        for term in _query_terms(query):
            if term in title_lower:
                score += 1.0
            if term in content_lower:
                score += 1.0
        return score

    def rank(self, notes: List[Note], query: str) -> List[SearchResult]:
        """Score notes, drop non-matches and sort by score (highest first).

        Notes with equal scores keep their input order.
        """
        terms = _query_terms(query)
        results: List[SearchResult] = []
        for note in notes:
            score = self.relevance_score(note, query)
            if score <= 0:
                continue
            haystack = f"{note.title}\n{note.content}".lower()
            results.append(
                SearchResult(
                    note=note,
                    score=score,
                    matched_terms={t for t in terms if t in haystack},
                    matched_context=_matched_context(note, terms),
                )
            )
        results.sort(key=lambda r: r.score, reverse=True)
        return results

    # =========================================================================
    # Owner-scoped search
    # =========================================================================

    def _filter_criteria(self, search_filter: SearchFilter) -> Dict[str, Any]:
        criteria: Dict[str, Any] = {
            "archived": search_filter.archived,
            "locked": search_filter.locked,
            "tags": search_filter.tags or None,
        }
        if search_filter.category_id:
            criteria["category_id"] = search_filter.category_id
        if search_filter.date_from:
            criteria["created_after"] = ensure_timezone_aware(search_filter.date_from)
        if search_filter.date_to:
            criteria["created_before"] = ensure_timezone_aware(search_filter.date_to)
        return criteria

    @staticmethod
    def _paginate(results: List[SearchResult], page: int, limit: Optional[int]) -> SearchPage:
        limit = min(limit or config.default_page_size, config.max_page_size)
        start = (page - 1) * limit
        return SearchPage(
            results=results[start : start + limit],
            pagination=Pagination.build(page, limit, len(results)),
        )

    def full_text_search(
        self, query: str, search_filter: Optional[SearchFilter] = None
    ) -> SearchPage:
        """Rank the owner's filtered notes against ``query`` and return one page."""
        search_filter = search_filter or SearchFilter()
        if not query or not query.strip():
            return self._paginate([], search_filter.page, search_filter.limit)
        candidates = self.note_service.find_notes(
            sort=[("updated_at", SortOrder.DESC)],
            **self._filter_criteria(search_filter),
        )
        results = self.rank(candidates, query)
        logger.debug(
            f"full_text_search '{query}': {len(results)} of {len(candidates)} notes matched"
        )
        return self._paginate(results, search_filter.page, search_filter.limit)

    def advanced_search(self, search_filter: SearchFilter) -> SearchPage:
        """Filter the owner's notes; rank them when the filter has a query.

        Without a query every filtered note is returned with score 1.0,
        newest first.
        """
        candidates = self.note_service.find_notes(
            sort=[("created_at", SortOrder.DESC)],
            **self._filter_criteria(search_filter),
        )
        if search_filter.query and search_filter.query.strip():
            results = self.rank(candidates, search_filter.query)
        else:
            results = [
                SearchResult(note=note, score=1.0, matched_terms=set(), matched_context="")
                for note in candidates
            ]
        return self._paginate(results, search_filter.page, search_filter.limit)

    # =========================================================================
    # Presentation helpers
    # =========================================================================

    @staticmethod
    def highlight(text: str, query: str, tag: str = "mark") -> str:
        """Wrap whole-word, case-insensitive matches of each query word in ``<tag>``."""
        terms = _query_terms(query)
        if not text or not terms:
            return text
        pattern = re.compile(
            r"\b(" + "|".join(re.escape(t) for t in terms) + r")\b", re.IGNORECASE
        )
        return pattern.sub(lambda m: f"<{tag}>{m.group(0)}</{tag}>", text)

    @staticmethod
    def suggestions(partial: str, notes: List[Note], limit: int = 5) -> List[str]:
        """Distinct titles containing ``partial``, in input order."""
        needle = (partial or "").strip().lower()
        if not needle:
            return []
        seen: Dict[str, None] = {}
        for note in notes:
            if needle in note.title.lower():
                seen.setdefault(note.title, None)
                if len(seen) >= limit:
                    break
        return list(seen)

