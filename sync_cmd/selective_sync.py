"""Selective sync list loading and journal reconciliation."""

from pathlib import Path
from typing import List, Optional

from sync_cmd.journal import SyncJournal
from sync_cmd.logging_setup import get_logger

logger = get_logger()


def normalize_folder(path: str) -> str:
    """Make sure a selective sync entry ends with '/'."""
    return path if path.endswith("/") else path + "/"


def parse_selective_sync_list(text: str) -> List[str]:
    """Parse the unsynced folders file format.

    One folder per line. Blank lines and lines starting with '#' are
    skipped. Order is preserved.
    """
    folders = []
    for line in text.split("\n"):
        line = line.rstrip("\r")
        if not line.strip() or line.startswith("#"):
            continue
        folders.append(normalize_folder(line))
    return folders


def load_selective_sync_list(path: str) -> Optional[List[str]]:
    """Read the unsynced folders file.

    Returns:
        The folder list, or None if the file could not be read
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Could not open file containing the list of unsynced folders: {path}: {e}")
        return None

    folders = parse_selective_sync_list(text)
    logger.info(f"Loaded {len(folders)} unsynced folders from {path}")
    return folders


def selective_sync_fixup(journal: SyncJournal, new_list: List[str]) -> None:
    """Reconcile a new selective sync list with the one from the last run.

    Every folder whose exclusion status flips gets its cached state
    distrusted, then the new list becomes the stored baseline. Nothing
    happens when there is no journal yet.
    """
    if not journal.exists():
        logger.debug("No sync journal yet, skipping selective sync fixup")
        return

    new_list = [normalize_folder(p) for p in new_list]
    old_set = {normalize_folder(p) for p in journal.get_selective_sync_list()}
    new_set = set(new_list)

    changes = (old_set - new_set) | (new_set - old_set)
    for folder in sorted(changes):
        journal.avoid_read_from_db_on_next_sync(folder)

    if changes:
        logger.info(f"Selective sync changed for {len(changes)} folders")

    journal.set_selective_sync_list(new_list)
