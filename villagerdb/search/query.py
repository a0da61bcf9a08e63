"""
villagerdb.search.query — Store-Neutral Search Queries
=======================================================

Callers describe *what* to match; :class:`~villagerdb.search.store.SearchIndexStore`
translates it for the engine.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class MatchAll:
    """Every document in the index."""


@dataclass(frozen=True, slots=True)
class MatchAny:
    """Documents where *text* matches at least one of *fields*.

    Keyword fields must equal *text* exactly; text fields match on any
    analysed term.
    """
    text: str
    fields: tuple[str, ...]


Query = MatchAll | MatchAny

MATCH_ALL = MatchAll()
