"""
Front end to the installer for compiling secondary dex files.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable

from dexmanager.domain.models import (
    ApplicationInfo,
    DexOptResult,
    DexoptFlags,
    StorageFlags,
)
from dexmanager.domain.storage_flags import storage_flags_for
from dexmanager.services.collaborators import Installer, InstallerError

logger = logging.getLogger(__name__)


class PackageDexOptimizer:
    """
    Decides the flags of a secondary dex compilation and runs it through the
    installer, once per instruction set.
    """

    def __init__(self, installer: Installer, install_lock: threading.Lock):
        self.installer = installer
        self.install_lock = install_lock

    def dexopt_secondary_dex_path(
        self,
        app_info: ApplicationInfo,
        dex_path: str,
        isas: Iterable[str],
        compiler_filter: str,
        is_used_by_other_apps: bool,
    ) -> DexOptResult:
        storage_flags = storage_flags_for(app_info)
        if storage_flags is None:
            logger.error(
                f"Could not infer CE/DE storage for package {app_info.package_name}, "
                f"not compiling {dex_path}"
            )
            return DexOptResult.FAILED

        dexopt_flags = DexoptFlags.SECONDARY_DEX
        if storage_flags == StorageFlags.CE:
            dexopt_flags |= DexoptFlags.STORAGE_CE
        else:
            dexopt_flags |= DexoptFlags.STORAGE_DE
        if is_used_by_other_apps:
            dexopt_flags |= DexoptFlags.PUBLIC
        dexopt_flags = self.adjust_dexopt_flags(dexopt_flags)

        performed = False
        for isa in sorted(isas):
            try:
                with self.install_lock:
                    compiled = self.installer.dexopt(
                        dex_path,
                        app_info.uid,
                        app_info.package_name,
                        isa,
                        dexopt_flags,
                        compiler_filter,
                        app_info.volume_uuid,
                    )
            except InstallerError as e:
                logger.warning(f"Failed to dexopt {dex_path} for {isa}: {e}")
                return DexOptResult.FAILED
            performed = performed or compiled

        return DexOptResult.PERFORMED if performed else DexOptResult.SKIPPED

    def adjust_dexopt_flags(self, dexopt_flags: DexoptFlags) -> DexoptFlags:
        return dexopt_flags


class ForcedUpdatePackageDexOptimizer(PackageDexOptimizer):
    """
    Optimizer that never lets the installer skip compilation as up to date.
    """

    def __init__(self, wrapped: PackageDexOptimizer):
        super().__init__(wrapped.installer, wrapped.install_lock)

    def adjust_dexopt_flags(self, dexopt_flags: DexoptFlags) -> DexoptFlags:
        return dexopt_flags | DexoptFlags.FORCE
