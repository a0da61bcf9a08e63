"""
VillagerDB — Town Directory with Eventually Consistent Search
==============================================================
Players publish their dream towns; everyone else browses and searches them.
Town records live in PostgreSQL; a Whoosh full-text index is kept in sync
through an append-only change log drained by a scheduled delta indexer and
rebuilt from scratch by an admin-triggered full reindex.

Package layout::

    villagerdb/
    ├── config.py              # YAML → typed Python config
    ├── database/
    │   ├── engine.py          # SQLAlchemy engine + async helper
    │   └── models.py          # Towns, change log, index pointer, run lease
    ├── search/
    │   ├── store.py           # Whoosh-backed search index store (generations)
    │   ├── query.py           # Store-neutral query objects
    │   └── documents.py       # Index field mappings + document shaping
    ├── services/
    │   ├── town_service.py    # Town writes + transactional change log append
    │   ├── change_log.py      # Change log reads / consumption
    │   ├── index_pointer.py   # Live-generation pointer (DB-backed)
    │   ├── job_lease.py       # Cross-process run serialization
    │   ├── indexer.py         # Full + delta reindex
    │   └── town_search.py     # Dream-directory search over the live index
    ├── worker/
    │   ├── scheduler.py       # Periodic delta reindex / orphan sweep loops
    │   └── __main__.py        # ``python -m villagerdb.worker``
    └── api/
        ├── main.py            # FastAPI app
        ├── deps.py            # Engine, config, indexer, JWT guards
        └── routes/            # Public search, town writes, admin triggers
"""

__version__ = "0.1.0"
