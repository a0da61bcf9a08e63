"""
tests/test_worker_cli.py — ``python -m villagerdb.worker`` Arguments
=====================================================================
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from conftest import add_town

import villagerdb.worker.__main__ as worker_main
from villagerdb.search.query import MATCH_ALL
from villagerdb.search.store import SearchIndexStore
from villagerdb.services.index_pointer import IndexPointerCache


class TestParser:
    def test_defaults(self):
        args = worker_main.build_parser().parse_args([])
        assert args.config == "config.yaml"
        assert args.full_reindex is False

    def test_full_reindex_and_config(self):
        args = worker_main.build_parser().parse_args(["--full-reindex", "-c", "/etc/v.yaml"])
        assert args.full_reindex is True
        assert args.config == "/etc/v.yaml"

    def test_unknown_flag_exits(self):
        with pytest.raises(SystemExit) as excinfo:
            worker_main.build_parser().parse_args(["--full-reindx"])
        assert excinfo.value.code == 2

    def test_help_exits_cleanly(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            worker_main.build_parser().parse_args(["--help"])
        assert excinfo.value.code == 0
        assert "--full-reindex" in capsys.readouterr().out


class TestMain:
    def test_full_reindex_runs_once(self, db_engine, tmp_path):
        search_dir = tmp_path / "search"
        config_path = tmp_path / "config.yaml"
        config_path.write_text(
            f"site_name: VillagerDB\nsearch_index_dir: {search_dir}\n", encoding="utf-8",
        )
        add_town(db_engine)

        with patch.object(worker_main, "create_db_engine", return_value=db_engine), \
                patch.object(worker_main, "run_forever") as run_forever:
            code = worker_main.main(["--full-reindex", "--config", str(config_path)])

        assert code == 0
        run_forever.assert_not_called()
        live = IndexPointerCache(db_engine).get("towns")
        assert SearchIndexStore(search_dir).count(live, MATCH_ALL) == 1
