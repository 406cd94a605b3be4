"""
JSON-file implementation of the dex usage ledger.

Writes happen on a background timer so that callers on a class loading path
never wait for disk I/O. Writes are spaced at least `write_interval_seconds`
apart; every change made while a write is pending or running is picked up by
the next one.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Dict, Optional, Set

from dexmanager.domain.models import DexUseInfo, LedgerFile, PackageUseInfo
from dexmanager.storage.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)

LEDGER_VERSION = 1

# Floor applied to the write delay after a failed write.
RETRY_DELAY_SECONDS = 5.0


class LedgerError(Exception):
    """The persisted ledger cannot be used."""


class JsonUsageLedger(UsageLedger):
    def __init__(self, ledger_path: Path, write_interval_seconds: float = 30.0):
        self._ledger_path = ledger_path
        self.write_interval_seconds = write_interval_seconds
        self._packages: Dict[str, PackageUseInfo] = {}
        self._lock = threading.RLock()

        # Background write state
        self._write_state_lock = threading.Lock()
        self._write_done = threading.Condition(self._write_state_lock)
        self._file_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._dirty = False
        self._writing = False
        self._last_write_failed = False
        self._last_write_at = float("-inf")

    @property
    def ledger_path(self) -> Path:
        return self._ledger_path

    # ========================================================================
    # Recording
    # ========================================================================

    def record(
        self,
        owning_package_name: str,
        dex_path: str,
        owner_user_id: int,
        loader_isa: str,
        is_used_by_other_apps: bool,
        primary_or_split: bool,
    ) -> bool:
        with self._lock:
            package_use_info = self._packages.get(owning_package_name)
            if package_use_info is None:
                package_use_info = PackageUseInfo()
                if primary_or_split:
                    package_use_info.is_used_by_other_apps = is_used_by_other_apps
                else:
                    package_use_info.dex_use_info_map[dex_path] = DexUseInfo(
                        is_used_by_other_apps=is_used_by_other_apps,
                        owner_user_id=owner_user_id,
                        loader_isas={loader_isa},
                    )
                self._packages[owning_package_name] = package_use_info
                return True

            if primary_or_split:
                if is_used_by_other_apps and not package_use_info.is_used_by_other_apps:
                    package_use_info.is_used_by_other_apps = True
                    return True
                return False

            new_dex_use_info = DexUseInfo(
                is_used_by_other_apps=is_used_by_other_apps,
                owner_user_id=owner_user_id,
                loader_isas={loader_isa},
            )
            existing = package_use_info.dex_use_info_map.get(dex_path)
            if existing is None:
                package_use_info.dex_use_info_map[dex_path] = new_dex_use_info
                return True
            # Raises ValueError if the owner changed; nothing is modified in that case.
            return existing.merge(new_dex_use_info)

    # ========================================================================
    # Queries
    # ========================================================================

    def get_package_use_info(self, package_name: str) -> Optional[PackageUseInfo]:
        with self._lock:
            package_use_info = self._packages.get(package_name)
            if package_use_info is None:
                return None
            return package_use_info.model_copy(deep=True)

    def get_all_packages_with_secondary_dex_files(self) -> Set[str]:
        with self._lock:
            return {
                name
                for name, package_use_info in self._packages.items()
                if package_use_info.dex_use_info_map
            }

    # ========================================================================
    # Pruning
    # ========================================================================

    def remove_user_package(self, package_name: str, user_id: int) -> bool:
        with self._lock:
            package_use_info = self._packages.get(package_name)
            if package_use_info is None:
                return False
            updated = False
            for dex_path, dex_use_info in list(package_use_info.dex_use_info_map.items()):
                if dex_use_info.owner_user_id == user_id:
                    del package_use_info.dex_use_info_map[dex_path]
                    updated = True
            return self._drop_if_unused(package_name, package_use_info) or updated

    def remove_dex_file(self, package_name: str, dex_path: str, user_id: int) -> bool:
        with self._lock:
            package_use_info = self._packages.get(package_name)
            if package_use_info is None:
                return False
            dex_use_info = package_use_info.dex_use_info_map.get(dex_path)
            if dex_use_info is None or dex_use_info.owner_user_id != user_id:
                return False
            del package_use_info.dex_use_info_map[dex_path]
            self._drop_if_unused(package_name, package_use_info)
            return True

    def sync_data(self, package_to_users: Dict[str, Set[int]]) -> None:
        with self._lock:
            for package_name in list(self._packages):
                users = package_to_users.get(package_name)
                if users is None:
                    logger.debug(f"Dropping dex usage of uninstalled package {package_name}")
                    del self._packages[package_name]
                    continue
                package_use_info = self._packages[package_name]
                for dex_path, dex_use_info in list(package_use_info.dex_use_info_map.items()):
                    if dex_use_info.owner_user_id not in users:
                        del package_use_info.dex_use_info_map[dex_path]
                self._drop_if_unused(package_name, package_use_info)

    def _drop_if_unused(self, package_name: str, package_use_info: PackageUseInfo) -> bool:
        # Caller holds self._lock
        if not package_use_info.dex_use_info_map and not package_use_info.is_used_by_other_apps:
            self._packages.pop(package_name, None)
            return True
        return False

    def clear(self) -> None:
        with self._lock:
            self._packages = {}

    # ========================================================================
    # Persistence
    # ========================================================================

    def read(self, strict: bool = False) -> None:
        """
        Load the ledger from disk.

        A missing file gives an empty ledger. An unreadable one also gives an
        empty ledger unless `strict` is set, in which case LedgerError is raised
        after the in-memory state has been cleared.
        """
        with self._lock:
            self._packages = {}
            path = self._ledger_path
            if not path.exists():
                return
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
                ledger = LedgerFile.model_validate(raw)
                if ledger.version != LEDGER_VERSION:
                    raise LedgerError(f"Unsupported ledger version {ledger.version}")
            except Exception as e:
                logger.warning(
                    f"Could not read dex usage from {path}, starting with a fresh state: {e}"
                )
                if strict:
                    if isinstance(e, LedgerError):
                        raise
                    raise LedgerError(str(e)) from e
                return
            self._packages = dict(ledger.packages)

    def write_now(self) -> None:
        with self._lock:
            snapshot = LedgerFile(version=LEDGER_VERSION, packages=self._packages)
            payload = snapshot.model_dump_json(indent=2)

        with self._file_lock:
            path = self._ledger_path
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".tmp")
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(path)
        logger.info(f"Wrote dex usage for {len(snapshot.packages)} packages to {path}")

    def maybe_write_async(self) -> None:
        with self._write_state_lock:
            self._dirty = True
            self._schedule_write_locked()

    def flush(self) -> None:
        with self._write_state_lock:
            while self._writing:
                self._write_done.wait()
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if not self._dirty:
                return
            self._dirty = False
            self._writing = True

        failed = True
        try:
            self.write_now()
            failed = False
        finally:
            with self._write_state_lock:
                self._writing = False
                self._last_write_at = time.monotonic()
                self._last_write_failed = failed
                if failed:
                    self._dirty = True
                # Changes recorded while this write ran go out with the next one.
                if self._dirty:
                    self._schedule_write_locked()
                self._write_done.notify_all()

    def has_pending_write(self) -> bool:
        with self._write_state_lock:
            return self._dirty or self._writing or self._timer is not None

    def _schedule_write_locked(self) -> None:
        # Caller holds self._write_state_lock. A running write reschedules itself.
        if self._timer is not None or self._writing:
            return
        delay = self._last_write_at + self.write_interval_seconds - time.monotonic()
        if self._last_write_failed:
            delay = max(delay, RETRY_DELAY_SECONDS)
        self._timer = threading.Timer(max(0.0, delay), self._background_write)
        self._timer.daemon = True
        self._timer.start()

    def _background_write(self) -> None:
        with self._write_state_lock:
            if self._timer is not threading.current_thread():
                # Cancelled by flush() after it had already fired.
                return
            self._timer = None
            if not self._dirty:
                return
            self._dirty = False
            self._writing = True

        failed = False
        try:
            self.write_now()
        except Exception as e:
            failed = True
            logger.error(f"Failed to write dex usage to {self._ledger_path}: {e}")
        finally:
            with self._write_state_lock:
                self._writing = False
                self._last_write_at = time.monotonic()
                self._last_write_failed = failed
                if failed:
                    self._dirty = True
                if self._dirty:
                    self._schedule_write_locked()
                self._write_done.notify_all()
