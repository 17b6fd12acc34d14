"""Main entry point for the command line sync client."""

import asyncio
import functools
import logging
import os
import sys
from dataclasses import dataclass
from typing import List, Optional, TextIO, Tuple
from urllib.parse import urlsplit

import yaml

from sync_cmd.config_loader import ConfigError, Settings, load_config_from_env
from sync_cmd.credentials import (
    CredentialSource,
    Credentials,
    EmbeddedCredentials,
    FlagCredentials,
    InteractivePrompt,
    NetrcCredentials,
    query_password,
    resolve_credentials,
)
from sync_cmd.engine import EngineFactory, SyncEngine, engine_context, load_engine_factory
from sync_cmd.excludes import ExcludeListError, load_exclude_lists
from sync_cmd.journal import SyncJournal
from sync_cmd.logging_setup import get_logger, setup_logging
from sync_cmd.options import RunConfig, parse_options
from sync_cmd.proxy import configure_proxy
from sync_cmd.selective_sync import load_selective_sync_list, selective_sync_fixup
from sync_cmd.target import (
    Account,
    AccountError,
    build_marker_url,
    embedded_credentials,
    normalize_target,
)

logger = get_logger()


@dataclass
class RestartState:
    """How many extra passes were started, out of how many allowed."""

    maximum: int
    count: int = 0

    def can_restart(self) -> bool:
        return self.count < self.maximum

    def record_restart(self) -> int:
        self.count += 1
        return self.count


class SyncRunner:
    """Orchestrates one command line sync run."""

    def __init__(
        self,
        config: RunConfig,
        settings: Optional[Settings] = None,
        engine_factory: Optional[EngineFactory] = None,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
    ):
        """Initialize sync runner.

        Args:
            config: Parsed command line options
            settings: Site settings, defaults when None
            engine_factory: Builds the engine for each attempt; taken from
                the settings when None
            stdin: Stream for interactive prompts
            stdout: Stream the prompts are written to
        """
        self.config = config
        self.settings = settings or Settings()
        self.engine_factory = engine_factory or load_engine_factory(self.settings.engine)
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.restarts = RestartState(maximum=config.max_sync_retries)
        self.engine_invocations = 0

    def credential_sources(self, marker_url: str) -> List[CredentialSource]:
        """Credential sources in rank order, lowest first."""
        embedded = embedded_credentials(marker_url)
        sources: List[CredentialSource] = [
            EmbeddedCredentials(embedded.user, embedded.password),
            FlagCredentials(self.config.user, self.config.password),
        ]
        if self.config.use_netrc:
            sources.append(NetrcCredentials())
        if self.config.interactive:
            sources.append(InteractivePrompt(self.stdin, self.stdout))
        return sources

    def prepare(self) -> None:
        """Resolve everything that stays fixed across restarts.

        Raises:
            AccountError: If the server address is unusable
            ExcludeListError: If no exclude list could be loaded
        """
        account = Account(non_shib=self.config.non_shib, dav_path=self.config.dav_path)
        marker_url = build_marker_url(self.config.target_url, account)
        host = urlsplit(marker_url).hostname or ""

        pair = resolve_credentials(self.credential_sources(marker_url), host)
        prompt = None
        if self.config.interactive:
            prompt = functools.partial(query_password, stdin=self.stdin, stdout=self.stdout)
        self.credentials = Credentials(
            user=pair.user,
            password=pair.password,
            ssl_trusted=self.config.trust_ssl,
            prompt=prompt,
        )

        self.target = normalize_target(marker_url, account, self.credentials)
        self.proxy = configure_proxy(self.config.proxy)

        self.excludes = load_exclude_lists(self.settings.system_exclude_file, self.config.exclude)

        self.journal = SyncJournal(self.config.source_dir, self.settings.journal_name)
        self.selective_sync_list: List[str] = []
        if self.config.unsynced_folders:
            folders = load_selective_sync_list(self.config.unsynced_folders)
            if folders is not None:
                self.selective_sync_list = folders
                selective_sync_fixup(self.journal, folders)

    def run(self) -> int:
        """Run the sync, restarting while the engine asks for it.

        Returns:
            Exit code (0 for success, 1 if the last pass failed)
        """
        return asyncio.run(self._run_loop())

    async def _run_loop(self) -> int:
        while True:
            success, another_sync_needed = await self._run_attempt()
            if not another_sync_needed:
                break
            if not self.restarts.can_restart():
                logger.warning(
                    "Another sync is needed, but not done because restart count is exceeded "
                    f"{self.restarts.count}"
                )
                break
            count = self.restarts.record_restart()
            logger.info(f"Restarting sync, because another sync is needed {count}")

        if not success:
            logger.error("Sync finished with errors")
            return 1
        return 0

    async def _run_attempt(self) -> Tuple[bool, bool]:
        """Run one pass with a freshly built engine.

        Returns:
            Whether the pass succeeded, and whether another pass is needed
        """
        loop = asyncio.get_running_loop()
        finished = loop.create_future()

        def _finish(success: bool) -> None:
            if not finished.done():
                finished.set_result(success)

        with engine_context(
            self.engine_factory,
            config=self.config,
            credentials=self.credentials,
            target=self.target,
            excludes=self.excludes,
            selective_sync_list=list(self.selective_sync_list),
            journal=self.journal,
            proxy=self.proxy,
        ) as engine:
            engine.on_finished(_finish)
            self.engine_invocations += 1
            # Queued so that a failing start still completes the future
            loop.call_soon(self._start_engine, engine, _finish)
            success = await finished
            return success, engine.is_another_sync_needed()

    @staticmethod
    def _start_engine(engine: SyncEngine, finish) -> None:
        try:
            engine.start_sync()
        except Exception as e:
            logger.error(f"Could not start sync: {e}")
            finish(False)


def _effective_log_level(config: RunConfig, settings: Settings) -> str:
    level = settings.log_level.upper()
    if config.silent and getattr(logging, level) < logging.WARNING:
        return "WARNING"
    return level


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    if argv is None:
        argv = sys.argv[1:]

    try:
        settings = load_config_from_env()
    except (ConfigError, yaml.YAMLError) as e:
        setup_logging()
        logger.error(f"Config error: {e}")
        return 1

    config = parse_options(argv, settings)

    setup_logging(
        settings.log_file_path,
        _effective_log_level(config, settings),
        max_bytes=settings.log_max_size_mb * 1024 * 1024,
        backup_count=settings.log_backup_count,
        rotation_enabled=settings.log_rotation_enabled,
    )

    try:
        runner = SyncRunner(config, settings)
        runner.prepare()
        return runner.run()
    except AccountError as e:
        logger.critical(f"Could not initialize account: {e}")
        os.abort()
    except ExcludeListError as e:
        logger.critical(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Sync interrupted by user")
        return 130
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
