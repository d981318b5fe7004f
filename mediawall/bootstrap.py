"""Bootstrap logic that prepares runtime directories and the JSON ledgers."""

from __future__ import annotations

import logging
from pathlib import Path

from . import config as config_module
from .config import AppConfig, load_config
from .services.corpus import ImplementedWorkCorpus
from .services.ledger import LedgerWriteError, LikesLedger
from .services.suggestions import SuggestionBacklog

LOGGER = logging.getLogger(__name__)


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> None:
        """Run all bootstrap tasks."""

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_directories()
        self._ensure_ledgers()
        self._check_media_root()
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_directories(self) -> None:
        data_root = self._config.data_root
        if not config_module._ensure_writable_directory(data_root):
            raise BootstrapError(f"Data directory '{data_root}' is not writable")
        LOGGER.debug("Ensured directory exists: %s", data_root)

        for path in (self._config.likes_file, self._config.suggestions_file):
            if not config_module._ensure_writable_directory(path.parent):
                raise BootstrapError(f"Ledger directory '{path.parent}' is not writable")

    def _ensure_ledgers(self) -> None:
        corpus = ImplementedWorkCorpus(self._config.history_file, self._config.report_file)
        ledgers = (
            ("likes", LikesLedger(self._config.likes_file)),
            ("suggestions", SuggestionBacklog(self._config.suggestions_file, corpus)),
        )
        for label, ledger in ledgers:
            try:
                reset = ledger.ensure()
            except LedgerWriteError as error:
                raise BootstrapError(f"Could not initialise the {label} ledger") from error
            if reset:
                LOGGER.info("Initialised empty %s ledger at %s", label, ledger.path)

    def _check_media_root(self) -> None:
        media_root: Path = self._config.media_root
        if not media_root.is_dir():
            LOGGER.warning(
                "Media directory '%s' does not exist; create it and add .mp4/.webm/.ogv or image files.",
                media_root,
            )


def initialize_app(config_path: Path | None = None) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization."""

    config = load_config(config_path=config_path)
    bootstrapper = Bootstrapper(config)
    bootstrapper.initialize()
    return config


__all__ = ["BootstrapError", "Bootstrapper", "initialize_app"]
