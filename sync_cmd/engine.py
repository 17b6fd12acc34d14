"""Interface to the sync engine and the per-attempt engine context."""

import asyncio
import importlib
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional

from sync_cmd.credentials import Credentials
from sync_cmd.excludes import ExcludePatternSet
from sync_cmd.journal import SyncJournal
from sync_cmd.logging_setup import get_logger
from sync_cmd.options import RunConfig
from sync_cmd.proxy import ProxySettings
from sync_cmd.target import Target

logger = get_logger()


@dataclass
class EngineContext:
    """Everything one sync attempt needs."""

    config: RunConfig
    credentials: Credentials
    target: Target
    excludes: ExcludePatternSet
    selective_sync_list: List[str]
    journal: SyncJournal
    proxy: ProxySettings
    closed: bool = field(default=False, init=False)


class SyncEngine(ABC):
    """One synchronization pass.

    ``start_sync`` must be called from inside a running event loop. It
    schedules ``sync`` and reports the outcome to every ``finished``
    callback exactly once.
    """

    def __init__(self, context: EngineContext):
        self.context = context
        self._finished_callbacks: List[Callable[[bool], None]] = []
        self._task: Optional[asyncio.Task] = None

    def on_finished(self, callback: Callable[[bool], None]) -> None:
        self._finished_callbacks.append(callback)

    def start_sync(self) -> None:
        """Schedule the pass on the running loop."""
        self._task = asyncio.get_running_loop().create_task(self.sync())
        self._task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            success = False
        elif task.exception() is not None:
            logger.error(f"Sync failed: {task.exception()}")
            success = False
        else:
            success = bool(task.result())
        self._emit_finished(success)

    def _emit_finished(self, success: bool) -> None:
        for callback in self._finished_callbacks:
            callback(success)

    def ensure_credentials(self) -> bool:
        """Make sure a password is known before talking to the server.

        Returns:
            True if the credentials are complete
        """
        credentials = self.context.credentials
        if credentials.is_ready:
            return True
        return credentials.ask_from_user()

    @abstractmethod
    async def sync(self) -> bool:
        """Run the pass.

        Returns:
            True on success
        """

    @abstractmethod
    def is_another_sync_needed(self) -> bool:
        """Whether the pass left work that only another pass can do."""

    def close(self) -> None:
        """Release resources held for this attempt."""
        self.context.closed = True


EngineFactory = Callable[[EngineContext], SyncEngine]


@contextmanager
def engine_context(factory: EngineFactory, **kwargs) -> Iterator[SyncEngine]:
    """Build a fresh context and engine, closing the engine on exit."""
    engine = factory(EngineContext(**kwargs))
    try:
        yield engine
    finally:
        engine.close()


def load_engine_factory(dotted: str) -> EngineFactory:
    """Resolve a 'package.module:callable' engine factory."""
    module_name, _, attr = dotted.partition(":")
    if not attr:
        raise ValueError(f"Engine must be given as 'module:callable', got '{dotted}'")
    module = importlib.import_module(module_name)
    return getattr(module, attr)
