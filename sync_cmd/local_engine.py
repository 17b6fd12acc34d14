"""Local discovery engine bundled with the command line client."""

import os
import time
from pathlib import Path
from typing import Dict, List, Tuple

from sync_cmd.engine import EngineContext, SyncEngine
from sync_cmd.journal import JournalRecord
from sync_cmd.logging_setup import get_logger

logger = get_logger()


class LocalDiscoveryEngine(SyncEngine):
    """Walks the local tree and brings the journal up to date.

    Exclude patterns, the hidden file policy and the selective sync list
    decide what is walked. Folders whose cached state is distrusted have
    their whole subtree reported as changed. Files modified while the walk
    is running make the engine ask for another pass.
    """

    def __init__(self, context: EngineContext):
        super().__init__(context)
        self._another_sync_needed = False
        self.changed: List[str] = []
        self.removed: List[str] = []

    def is_another_sync_needed(self) -> bool:
        return self._another_sync_needed

    async def sync(self) -> bool:
        config = self.context.config
        journal = self.context.journal
        target = self.context.target
        self.ensure_credentials()
        logger.info(
            f"Starting discovery of {config.source_dir} for {target.remote_url} on {target.host}"
        )
        logger.debug(
            f"Proxies: {self.context.proxy.proxies() or 'none'}, "
            f"trust SSL: {self.context.credentials.ssl_is_trusted()}"
        )

        started = time.time()
        previous = journal.load_records()
        current, untrusted = self._scan(Path(config.source_dir))

        self.changed = []
        for path, record in sorted(current.items()):
            old = previous.get(path)
            distrusted = any(path == d or path.startswith(d + "/") for d in untrusted)
            if distrusted or old is None or (old.mtime, old.size) != (record.mtime, record.size):
                self.changed.append(path)
            if not record.is_dir and record.mtime > started:
                logger.info(f"{path} changed during discovery")
                self._another_sync_needed = True

        self.removed = sorted(set(previous) - set(current))

        journal.save_records(current)
        journal.clear_avoid_read_from_db()

        logger.info(
            f"Discovery finished: {len(current)} items, "
            f"{len(self.changed)} changed, {len(self.removed)} removed"
        )
        return True

    def _is_journal_file(self, name: str) -> bool:
        journal_name = Path(self.context.journal.db_path).name
        return name.startswith(journal_name)

    def _is_unsynced(self, relative_dir: str) -> bool:
        folder = relative_dir + "/"
        return any(
            folder.startswith(entry.lstrip("/")) for entry in self.context.selective_sync_list
        )

    def _skip(self, name: str, relative_path: str, is_dir: bool) -> bool:
        if self.context.config.ignore_hidden_files and name.startswith("."):
            return True
        if self.context.excludes.is_excluded(relative_path, is_dir):
            logger.debug(f"Excluded: {relative_path}")
            return True
        return False

    def _scan(self, root: Path) -> Tuple[Dict[str, JournalRecord], List[str]]:
        """Collect records for everything that takes part in the sync.

        Returns:
            Records keyed by relative path, and the distrusted folders
        """
        journal = self.context.journal
        records: Dict[str, JournalRecord] = {}
        untrusted: List[str] = []

        for dirpath, dirnames, filenames in os.walk(root):
            relative_dir = Path(dirpath).relative_to(root).as_posix()
            if relative_dir == ".":
                relative_dir = ""

            kept = []
            for name in sorted(dirnames):
                relative_path = f"{relative_dir}/{name}" if relative_dir else name
                if self._skip(name, relative_path, True) or self._is_unsynced(relative_path):
                    continue
                kept.append(name)
                try:
                    stat_info = os.stat(os.path.join(dirpath, name))
                except OSError as e:
                    logger.warning(f"Could not stat directory {relative_path}: {e}")
                    continue
                records[relative_path] = JournalRecord(
                    relative_path,
                    stat_info.st_mtime,
                    0,
                    is_dir=True,
                    etag=str(stat_info.st_mtime_ns),
                )
                if not journal.is_read_from_db_allowed(relative_path):
                    untrusted.append(relative_path)
            dirnames[:] = kept

            for name in filenames:
                if self._is_journal_file(name):
                    continue
                relative_path = f"{relative_dir}/{name}" if relative_dir else name
                if self._skip(name, relative_path, False):
                    continue
                try:
                    stat_info = os.stat(os.path.join(dirpath, name))
                except OSError as e:
                    logger.warning(f"Could not stat file {relative_path}: {e}")
                    continue
                records[relative_path] = JournalRecord(
                    relative_path,
                    stat_info.st_mtime,
                    stat_info.st_size,
                    etag=f"{stat_info.st_mtime_ns:x}-{stat_info.st_size:x}",
                )

        return records, untrusted
