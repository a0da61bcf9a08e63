"""
villagerdb.search.store — Whoosh-Backed Search Index Store
===========================================================

Holds any number of named index *generations* side by side, one Whoosh
index per sub-directory of ``root``::

    <root>/
    ├── towns_1718000000000/     # previous generation (deleted after swap)
    └── towns_1718000300000/     # live generation

Field mappings are declared up front with :class:`FieldKind`; the original
document is kept in a stored ``source`` field so hits come back exactly as
they were indexed, lists included.

Every public method opens the generation, does its work and closes it, so
a store instance is safe to share between threads.  Whoosh allows one
writer per index at a time; a held writer lock surfaces as
:class:`IndexBusyError`.
"""

from __future__ import annotations

import enum
import logging
import re
import shutil
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from whoosh import index
from whoosh.fields import ID, KEYWORD, STORED, TEXT, Schema
from whoosh.index import LockError
from whoosh.qparser import OrGroup, QueryParser
from whoosh.query import Every, Or, Term

from villagerdb.search.query import MatchAll, MatchAny, Query

logger = logging.getLogger(__name__)

ID_FIELD = "doc_id"
SOURCE_FIELD = "source"
RESERVED_FIELDS = frozenset({ID_FIELD, SOURCE_FIELD})

_INDEX_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-]*$")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class SearchIndexError(Exception):
    """Base class for search index store failures."""


class IndexNotFoundError(SearchIndexError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Search index {name!r} does not exist")
        self.name = name


class IndexExistsError(SearchIndexError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Search index {name!r} already exists")
        self.name = name


class IndexBusyError(SearchIndexError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Search index {name!r} is locked by another writer")
        self.name = name


# ---------------------------------------------------------------------------
# Mappings & results
# ---------------------------------------------------------------------------
class FieldKind(enum.StrEnum):
    """How a document field is indexed."""
    KEYWORD = "keyword"  # Exact match; list values become one term each
    TEXT = "text"        # Analysed full text


@dataclass(slots=True)
class SearchHit:
    id: str
    source: dict[str, Any] = field(default_factory=dict)
    score: float = 0.0


def _whoosh_schema(fields: Mapping[str, FieldKind]) -> Schema:
    columns: dict[str, Any] = {
        ID_FIELD: ID(stored=True, unique=True),
        SOURCE_FIELD: STORED,
    }
    for name, kind in fields.items():
        if name in RESERVED_FIELDS:
            raise ValueError(f"Field name {name!r} is reserved")
        if kind is FieldKind.KEYWORD:
            columns[name] = KEYWORD(commas=True, scorable=True)
        elif kind is FieldKind.TEXT:
            columns[name] = TEXT()
        else:
            raise ValueError(f"Unsupported field kind for {name!r}: {kind!r}")
    return Schema(**columns)


# ---------------------------------------------------------------------------
# SearchIndexStore
# ---------------------------------------------------------------------------
class SearchIndexStore:
    """Named Whoosh indexes under a single root directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    # -------------------------------------------------------------------
    # Index lifecycle
    # -------------------------------------------------------------------
    def _path(self, name: str) -> Path:
        if not _INDEX_NAME_RE.match(name):
            raise ValueError(f"Invalid index name: {name!r}")
        return self.root / name

    def exists(self, name: str) -> bool:
        path = self._path(name)
        return path.is_dir() and index.exists_in(str(path))

    def list_indexes(self, prefix: str = "") -> list[str]:
        """Return the names of all indexes starting with *prefix*, sorted."""
        return sorted(
            p.name for p in self.root.iterdir()
            if p.is_dir() and p.name.startswith(prefix) and index.exists_in(str(p))
        )

    def create_index(self, name: str, fields: Mapping[str, FieldKind]) -> None:
        """Create an empty index with explicit field mappings."""
        path = self._path(name)
        if path.exists():
            raise IndexExistsError(name)
        schema = _whoosh_schema(fields)
        path.mkdir(parents=True)
        index.create_in(str(path), schema).close()
        logger.info("Created search index %s (%d fields)", name, len(fields))

    def delete_index(self, name: str) -> None:
        path = self._path(name)
        if not path.exists():
            raise IndexNotFoundError(name)
        shutil.rmtree(path)
        logger.info("Deleted search index %s", name)

    def _open(self, name: str):
        if not self.exists(name):
            raise IndexNotFoundError(name)
        return index.open_dir(str(self._path(name)))

    # -------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------
    @staticmethod
    def _fields_for(schema: Schema, doc_id: str, doc: Mapping[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {ID_FIELD: doc_id, SOURCE_FIELD: dict(doc)}
        for name, value in doc.items():
            if value is None or name not in schema or name in RESERVED_FIELDS:
                continue
            if isinstance(value, (list, tuple)):
                sep = "," if isinstance(schema[name], KEYWORD) else " "
                value = sep.join(str(v) for v in value)
            values[name] = str(value)
        return values

    def index_document(self, name: str, doc_id: str, doc: Mapping[str, Any]) -> None:
        """Insert or replace the document stored under *doc_id*."""
        self.index_documents(name, [(doc_id, doc)])

    def index_documents(
        self, name: str, docs: Iterable[tuple[str, Mapping[str, Any]]],
    ) -> int:
        """Upsert many documents through one writer; returns how many.

        Nothing becomes visible unless the whole iterable is consumed
        without error.
        """
        ix = self._open(name)
        written = 0
        try:
            try:
                writer = ix.writer()
            except LockError as exc:
                raise IndexBusyError(name) from exc
            with writer:
                for doc_id, doc in docs:
                    writer.update_document(**self._fields_for(ix.schema, doc_id, doc))
                    written += 1
        finally:
            ix.close()
        return written

    def delete_document(self, name: str, doc_id: str) -> bool:
        """Remove *doc_id*.  Returns False if it was not there (not an error)."""
        ix = self._open(name)
        try:
            try:
                writer = ix.writer()
            except LockError as exc:
                raise IndexBusyError(name) from exc
            with writer:
                deleted = writer.delete_by_term(ID_FIELD, doc_id)
        finally:
            ix.close()
        return bool(deleted)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    @staticmethod
    def _compile(schema: Schema, query: Query):
        if isinstance(query, MatchAll):
            return Every()
        if isinstance(query, MatchAny):
            clauses = []
            for name in query.fields:
                if name not in schema:
                    raise ValueError(f"Unknown search field: {name!r}")
                if isinstance(schema[name], TEXT):
                    clauses.append(
                        QueryParser(name, schema, group=OrGroup).parse(query.text)
                    )
                else:
                    clauses.append(Term(name, query.text))
            return Or(clauses)
        raise TypeError(f"Unsupported query: {query!r}")

    def count(self, name: str, query: Query) -> int:
        ix = self._open(name)
        try:
            with ix.searcher() as searcher:
                return len(searcher.search(self._compile(ix.schema, query), limit=None))
        finally:
            ix.close()

    def search(self, name: str, query: Query, offset: int = 0, size: int = 10) -> list[SearchHit]:
        """Return up to *size* hits starting at *offset*, best match first."""
        if size < 1:
            return []
        offset = max(offset, 0)
        ix = self._open(name)
        try:
            with ix.searcher() as searcher:
                results = searcher.search(
                    self._compile(ix.schema, query), limit=offset + size,
                )
                return [
                    SearchHit(id=hit[ID_FIELD], source=dict(hit[SOURCE_FIELD]), score=hit.score or 0.0)
                    for hit in results[offset:offset + size]
                ]
        finally:
            ix.close()

    def get_document(self, name: str, doc_id: str) -> dict[str, Any] | None:
        """Return the stored source of *doc_id*, or None."""
        ix = self._open(name)
        try:
            with ix.searcher() as searcher:
                stored = searcher.document(**{ID_FIELD: doc_id})
        finally:
            ix.close()
        return dict(stored[SOURCE_FIELD]) if stored else None
