"""On-disk layout of an installation root."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from shipwright.config import Config, default_search_paths
from shipwright.utils.fs import atomic_write_text

logger = logging.getLogger(__name__)

__all__ = ["InstallationLayout"]


@dataclass(frozen=True)
class InstallationLayout:
    """Paths under an installation root ``R``.

    ``R/<live_dir>`` is the live tree, ``R/staging/<txid>/tree`` a candidate,
    ``R/backups/<id>/`` a backup. ``update.lock``, ``apply.journal``,
    ``inconsistent.flag`` and ``registry.state`` sit directly under ``R``.
    """

    root: Path
    live_dir_name: str = "live"
    version_file: str = "VERSION"
    tree_dir: str = "modules"

    @classmethod
    def from_config(cls, config: Config) -> InstallationLayout:
        return cls(
            root=Path(config.get("install.root", ".")).expanduser().absolute(),
            live_dir_name=config.get("install.live_dir", "live"),
            version_file=config.get("install.version_file", "VERSION"),
            tree_dir=config.get("modules.tree_dir", "modules"),
        )

    @property
    def live_dir(self) -> Path:
        return self.root / self.live_dir_name

    @property
    def staging_dir(self) -> Path:
        return self.root / "staging"

    @property
    def backups_dir(self) -> Path:
        return self.root / "backups"

    @property
    def lock_path(self) -> Path:
        return self.root / "update.lock"

    @property
    def journal_path(self) -> Path:
        return self.root / "apply.journal"

    @property
    def inconsistent_flag(self) -> Path:
        return self.root / "inconsistent.flag"

    @property
    def registry_state(self) -> Path:
        return self.root / "registry.state"

    def search_paths(self, config: Config | None = None) -> list[Path]:
        """Module search paths, highest priority first.

        ``modules.search_paths`` overrides the defaults; relative entries are
        taken relative to the installation root.
        """
        configured = config.get("modules.search_paths") if config is not None else None
        if configured:
            return [p if p.is_absolute() else self.root / p for p in (Path(str(c)).expanduser() for c in configured)]
        return default_search_paths(self.live_dir, self.tree_dir)

    def read_version(self, tree: Path | None = None) -> str | None:
        """Version marker of ``tree`` (the live tree by default), or None."""
        marker = (tree if tree is not None else self.live_dir) / self.version_file
        try:
            text = marker.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return text or None

    # ----- Inconsistency flag -----

    def is_inconsistent(self) -> bool:
        return self.inconsistent_flag.exists()

    def inconsistent_reason(self) -> str | None:
        try:
            return self.inconsistent_flag.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None

    def mark_inconsistent(self, reason: str) -> None:
        stamp = datetime.now(timezone.utc).isoformat()
        atomic_write_text(self.inconsistent_flag, f"{stamp} {reason}\n")
        logger.critical("Installation at %s flagged inconsistent: %s", self.root, reason)

    def clear_inconsistent(self) -> bool:
        if not self.inconsistent_flag.exists():
            return False
        self.inconsistent_flag.unlink()
        logger.info("Inconsistency flag cleared for %s", self.root)
        return True
