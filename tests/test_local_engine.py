"""Tests for the bundled local discovery engine."""

import asyncio
import logging
import os
import time

from sync_cmd.credentials import Credentials
from sync_cmd.excludes import ExcludePatternSet
from sync_cmd.local_engine import LocalDiscoveryEngine
from sync_cmd.proxy import ProxySettings


def _write(root, relative_path, content="data"):
    path = os.path.join(root, relative_path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return path


def _sync(context):
    engine = LocalDiscoveryEngine(context)
    assert asyncio.run(engine.sync()) is True
    return engine


class TestLocalDiscoveryEngine:
    """LocalDiscoveryEngine tests."""

    def test_first_pass_records_everything(self, source_dir, make_context):
        _write(source_dir, "a.txt")
        _write(source_dir, "docs/b.txt")
        context = make_context()

        engine = _sync(context)

        assert engine.changed == ["a.txt", "docs", "docs/b.txt"]
        assert set(context.journal.load_records()) == {"a.txt", "docs", "docs/b.txt"}
        assert not engine.is_another_sync_needed()

    def test_second_pass_sees_no_changes(self, source_dir, make_context):
        _write(source_dir, "a.txt")
        _sync(make_context())

        engine = _sync(make_context())

        assert engine.changed == []
        assert engine.removed == []

    def test_removed_file_reported(self, source_dir, make_context):
        path = _write(source_dir, "a.txt")
        _sync(make_context())
        os.remove(path)

        engine = _sync(make_context())

        assert engine.removed == ["a.txt"]

    def test_hidden_files_ignored_by_default(self, source_dir, make_context):
        _write(source_dir, ".hidden")
        _write(source_dir, ".config/settings")
        _write(source_dir, "visible.txt")

        engine = _sync(make_context())

        assert engine.changed == ["visible.txt"]

    def test_hidden_files_synced_when_asked(self, source_dir, make_context):
        _write(source_dir, ".hidden")
        context = make_context(ignore_hidden_files=False)

        engine = _sync(context)

        assert ".hidden" in engine.changed
        # The journal itself never takes part in the sync
        assert not any(p.startswith(".sync_journal") for p in engine.changed)

    def test_exclude_patterns_applied(self, source_dir, make_context):
        _write(source_dir, "keep.txt")
        _write(source_dir, "drop.tmp")
        _write(source_dir, "build/out.o")

        engine = _sync(make_context(excludes=ExcludePatternSet(["*.tmp", "build/"])))

        assert engine.changed == ["keep.txt"]

    def test_unsynced_folders_skipped(self, source_dir, make_context):
        _write(source_dir, "Photos/2019/a.jpg")
        _write(source_dir, "Photos/2020/b.jpg")

        engine = _sync(make_context(selective_sync_list=["Photos/2019/"]))

        assert "Photos/2019" not in engine.changed
        assert "Photos/2020/b.jpg" in engine.changed

    def test_distrusted_folder_rescanned(self, source_dir, make_context):
        """Test that a distrusted folder reports its whole subtree as changed."""
        _write(source_dir, "A/one.txt")
        _write(source_dir, "B/two.txt")
        context = make_context()
        _sync(context)

        context.journal.avoid_read_from_db_on_next_sync("A/")
        engine = _sync(make_context())

        assert engine.changed == ["A", "A/one.txt"]
        assert context.journal.is_read_from_db_allowed("A")

    def test_change_during_pass_needs_another_sync(self, source_dir, make_context):
        path = _write(source_dir, "busy.txt")
        future = time.time() + 3600
        os.utime(path, (future, future))

        engine = _sync(make_context())

        assert engine.is_another_sync_needed()

    def test_pass_fills_password_and_logs_connection(self, source_dir, make_context, caplog):
        """Test that a pass asks for a missing password and logs how it connects."""
        _write(source_dir, "a.txt")
        context = make_context()
        context.credentials = Credentials("alice", ssl_trusted=True, prompt=lambda user: "pw")
        context.proxy = ProxySettings(use_system=False, host="proxy.local", port=3128)

        with caplog.at_level(logging.DEBUG, logger="sync_cmd"):
            _sync(context)

        assert context.credentials.password == "pw"
        assert "on cloud.example.com" in caplog.text
        assert "http://proxy.local:3128" in caplog.text
        assert "trust SSL: True" in caplog.text
