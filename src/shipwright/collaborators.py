"""External collaborators: service control, privilege escalation, version sources."""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from enum import Enum
from pathlib import Path
from typing import Protocol, Sequence, runtime_checkable

from shipwright.errors import VersionSourceError
from shipwright.utils.fs import copy_tree, remove_tree
from shipwright.versioning import latest_version, normalize_version, parse_version

logger = logging.getLogger(__name__)

__all__ = [
    "ServiceStatus",
    "ServiceController",
    "NullServiceController",
    "SystemctlServiceController",
    "PrivilegeEscalator",
    "NoEscalation",
    "SudoEscalator",
    "VersionSource",
    "DirectoryVersionSource",
    "GitVersionSource",
]


# ----- Service control -----


class ServiceStatus(str, Enum):
    """Observed state of a managed service."""

    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


@runtime_checkable
class ServiceController(Protocol):
    """Starts, stops and inspects the service backed by the installation."""

    def start(self, name: str) -> bool: ...

    def stop(self, name: str) -> bool: ...

    def restart(self, name: str) -> bool: ...

    def status(self, name: str) -> ServiceStatus: ...


class NullServiceController:
    """Controller for installations that do not run as a service."""

    def start(self, name: str) -> bool:
        return True

    def stop(self, name: str) -> bool:
        return True

    def restart(self, name: str) -> bool:
        return True

    def status(self, name: str) -> ServiceStatus:
        return ServiceStatus.UNKNOWN


class SystemctlServiceController:
    """systemd controller that tries the user unit first, then the system unit.

    System-scope commands are prefixed with ``sudo -n`` unless
    ``use_sudo`` is False.
    """

    def __init__(self, use_sudo: bool = True, timeout: float = 30.0) -> None:
        self._use_sudo = use_sudo
        self._timeout = timeout

    def _run(self, args: Sequence[str], system: bool = False) -> subprocess.CompletedProcess[str] | None:
        if system:
            cmd = ["sudo", "-n", "systemctl", *args] if self._use_sudo else ["systemctl", *args]
        else:
            cmd = ["systemctl", "--user", *args]
        try:
            return subprocess.run(cmd, capture_output=True, text=True, timeout=self._timeout)
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            logger.warning("systemctl command failed: %s: %s", " ".join(cmd), e)
            return None

    def _succeeds(self, args: Sequence[str], system: bool = False) -> bool:
        result = self._run(args, system=system)
        return result is not None and result.returncode == 0

    def _scope(self, name: str) -> bool | None:
        """True for a system unit, False for a user unit, None if neither is known."""
        if self._succeeds(["is-enabled", name]) or self._succeeds(["is-active", name]):
            return False
        if self._succeeds(["is-enabled", name], system=True) or self._succeeds(["is-active", name], system=True):
            return True
        return None

    def _act(self, action: str, name: str) -> bool:
        system = self._scope(name)
        if system is None:
            logger.warning("No systemd unit found for service '%s'", name)
            return False
        ok = self._succeeds([action, name], system=system)
        level = logging.INFO if ok else logging.ERROR
        logger.log(level, "%s %s service '%s': %s", action, "system" if system else "user", name, "ok" if ok else "failed")
        return ok

    def start(self, name: str) -> bool:
        return self._act("start", name)

    def stop(self, name: str) -> bool:
        return self._act("stop", name)

    def restart(self, name: str) -> bool:
        return self._act("restart", name)

    def status(self, name: str) -> ServiceStatus:
        system = self._scope(name)
        if system is None:
            return ServiceStatus.UNKNOWN
        if self._succeeds(["is-active", name], system=system):
            return ServiceStatus.RUNNING
        return ServiceStatus.STOPPED


# ----- Privilege escalation -----


@runtime_checkable
class PrivilegeEscalator(Protocol):
    """Performs filesystem moves the current user is not permitted to do."""

    def move(self, src: Path, dst: Path) -> bool: ...

    def copy(self, src: Path, dst: Path) -> bool: ...


class NoEscalation:
    """Escalator that always declines."""

    def move(self, src: Path, dst: Path) -> bool:
        return False

    def copy(self, src: Path, dst: Path) -> bool:
        return False


class SudoEscalator:
    """Escalator that runs ``mv``/``cp -a`` through non-interactive sudo."""

    def __init__(self, timeout: float = 120.0) -> None:
        self._timeout = timeout

    def _run(self, cmd: list[str]) -> bool:
        try:
            result = subprocess.run(["sudo", "-n", *cmd], capture_output=True, text=True, timeout=self._timeout)
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            logger.error("Escalated command failed: %s: %s", " ".join(cmd), e)
            return False
        if result.returncode != 0:
            logger.error("Escalated command failed: %s: %s", " ".join(cmd), result.stderr.strip())
            return False
        return True

    def move(self, src: Path, dst: Path) -> bool:
        return self._run(["mv", "-T", str(src), str(dst)])

    def copy(self, src: Path, dst: Path) -> bool:
        return self._run(["cp", "-a", "-T", str(src), str(dst)])


# ----- Version sources -----


@runtime_checkable
class VersionSource(Protocol):
    """Where candidate installation trees come from.

    ``fetch`` raises TimeoutError when ``timeout`` elapses and
    VersionSourceError for any other failure.
    """

    def latest(self) -> str: ...

    def fetch(self, version: str, dest: Path, timeout: float | None = None) -> Path: ...


class DirectoryVersionSource:
    """A local directory holding one ``<version>/`` tree per release."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def versions(self) -> list[str]:
        """Versions present under the root, oldest first."""
        if not self._root.is_dir():
            return []
        found: list[str] = []
        for entry in self._root.iterdir():
            if not entry.is_dir():
                continue
            try:
                parse_version(entry.name)
            except ValueError:
                continue
            found.append(entry.name)
        return sorted(found, key=parse_version)

    def latest(self) -> str:
        """Newest version available.

        Raises:
            VersionSourceError: If the root is missing or holds no versions.
        """
        newest = latest_version(self.versions())
        if newest is None:
            raise VersionSourceError(message=f"No versions available in {self._root}")
        return newest

    def _tree_for(self, version: str) -> Path | None:
        for name in (version, f"v{normalize_version(version)}", normalize_version(version)):
            candidate = self._root / name
            if candidate.is_dir():
                return candidate
        return None

    def fetch(self, version: str, dest: Path, timeout: float | None = None) -> Path:
        """Copy the tree for ``version`` to ``dest``.

        Raises:
            VersionSourceError: If the version does not exist or the copy fails.
            TimeoutError: If the copy took longer than ``timeout`` seconds.
        """
        tree = self._tree_for(version)
        if tree is None:
            raise VersionSourceError(message=f"Version {version} not found in {self._root}", version=version)

        started = time.monotonic()
        try:
            copy_tree(tree, dest)
        except OSError as e:
            raise VersionSourceError(message=f"Copying {tree} failed: {e}", version=version) from e
        if timeout is not None and time.monotonic() - started > timeout:
            remove_tree(dest)
            raise TimeoutError(f"Fetching {version} exceeded {timeout}s")
        return dest


class GitVersionSource:
    """Releases published as ``v<version>`` tags of a git repository."""

    def __init__(self, url: str, tag_prefix: str = "v", timeout: float = 60.0) -> None:
        self._url = url
        self._tag_prefix = tag_prefix
        self._timeout = timeout

    @property
    def url(self) -> str:
        return self._url

    def _git(self, args: list[str], timeout: float | None) -> subprocess.CompletedProcess[str]:
        cmd = ["git", *args]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise TimeoutError(f"git {args[0]} exceeded {timeout}s") from e
        except FileNotFoundError as e:
            raise VersionSourceError(message="git executable not found") from e
        if result.returncode != 0:
            raise VersionSourceError(message=f"git {args[0]} failed: {result.stderr.strip()}")
        return result

    def tags(self) -> list[str]:
        """Release versions advertised by the remote (tag prefix stripped)."""
        result = self._git(["ls-remote", "--tags", self._url], timeout=self._timeout)
        versions: list[str] = []
        for line in result.stdout.splitlines():
            _, _, ref = line.partition("\t")
            if not ref.startswith("refs/tags/") or ref.endswith("^{}"):
                continue
            tag = ref[len("refs/tags/") :]
            if not tag.startswith(self._tag_prefix):
                continue
            version = tag[len(self._tag_prefix) :]
            try:
                parse_version(version)
            except ValueError:
                continue
            versions.append(version)
        return versions

    def latest(self) -> str:
        """Newest release tag.

        Raises:
            VersionSourceError: If the remote cannot be queried or has no release tags.
        """
        try:
            newest = latest_version(self.tags())
        except TimeoutError as e:
            raise VersionSourceError(message=str(e)) from e
        if newest is None:
            raise VersionSourceError(message=f"No release tags found at {self._url}")
        return newest

    def fetch(self, version: str, dest: Path, timeout: float | None = None) -> Path:
        """Shallow-clone the release tag into ``dest`` and drop the git metadata."""
        tag = f"{self._tag_prefix}{normalize_version(version)}"
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._git(["clone", "--depth", "1", "--branch", tag, self._url, str(dest)], timeout=timeout)
        except VersionSourceError as e:
            remove_tree(dest)
            raise VersionSourceError(message=e.message, version=version) from e
        except TimeoutError:
            remove_tree(dest)
            raise
        git_dir = dest / ".git"
        if git_dir.exists():
            shutil.rmtree(git_dir)
        return dest
