"""
Tracks how dex files are used.

Every time an application reports that it loaded dex files, the manager finds
the package owning each file and records the usage in the usage ledger. The
ledger is what later drives compilation of secondary dex files and the cleanup
of records whose files are gone.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional, Set

from dexmanager.domain.code_locations import CodeLocationCache
from dexmanager.domain.models import (
    ApplicationInfo,
    DexOptResult,
    DexSearchOutcome,
    PackageInfo,
    PackageUseInfo,
)
from dexmanager.domain.ownership import FrameworkPathPredicate, OwnershipResolver
from dexmanager.domain.storage_flags import storage_flags_for
from dexmanager.services.collaborators import Installer, InstallerError, PackageRegistry
from dexmanager.services.dex_optimizer import (
    ForcedUpdatePackageDexOptimizer,
    PackageDexOptimizer,
)
from dexmanager.storage.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)


class DexManager:
    """
    Entry point for dex load notifications, install-state sync and secondary
    dex maintenance.

    The code location cache and the ledger's record calls are guarded by one
    lock. Installer calls are guarded by the shared install lock.
    """

    def __init__(
        self,
        usage_ledger: UsageLedger,
        package_registry: PackageRegistry,
        dex_optimizer: PackageDexOptimizer,
        installer: Installer,
        install_lock: threading.Lock,
        supported_isas: Iterable[str],
        is_framework_path: FrameworkPathPredicate,
    ):
        self.usage_ledger = usage_ledger
        self.package_registry = package_registry
        self.dex_optimizer = dex_optimizer
        self.installer = installer
        self.install_lock = install_lock
        self.supported_isas = frozenset(supported_isas)

        self._lock = threading.Lock()
        self._cache = CodeLocationCache()
        self._resolver = OwnershipResolver(self._cache, is_framework_path)

    @property
    def code_location_cache(self) -> CodeLocationCache:
        return self._cache

    # ========================================================================
    # Load notifications
    # ========================================================================

    def notify_dex_load(
        self,
        loading_app_info: ApplicationInfo,
        dex_paths: List[str],
        loader_isa: str,
        loader_user_id: int,
    ) -> None:
        """
        Notify about dex files loads.

        Called on the loading application's class loading path, so it never
        raises and never waits for the ledger to reach disk.
        """
        try:
            self._notify_dex_load_internal(loading_app_info, dex_paths, loader_isa, loader_user_id)
        except Exception as e:
            logger.warning(
                f"Exception while notifying dex load for package "
                f"{loading_app_info.package_name}: {e}",
                exc_info=True,
            )

    def _notify_dex_load_internal(
        self,
        loading_app_info: ApplicationInfo,
        dex_paths: List[str],
        loader_isa: str,
        loader_user_id: int,
    ) -> None:
        if loader_isa not in self.supported_isas:
            logger.warning(f"Loading dex files {dex_paths} in unsupported ISA: {loader_isa}?")
            return

        loading_package = loading_app_info.package_name
        for dex_path in dex_paths:
            with self._lock:
                search_result = self._resolver.resolve(loading_app_info, dex_path, loader_user_id)
                logger.debug(
                    f"{loading_package} loads from {search_result} : {loader_user_id} : {dex_path}"
                )

                if search_result.outcome == DexSearchOutcome.NOT_FOUND:
                    # Bogus load, or a package installed since the last sync.
                    # Untracked files are not considered for compilation.
                    logger.debug(f"Could not find owning package for dex file: {dex_path}")
                    continue

                # Packages sharing a runtime are also counted as other apps.
                is_used_by_other_apps = loading_package != search_result.owning_package_name
                primary_or_split = search_result.outcome in (
                    DexSearchOutcome.FOUND_PRIMARY,
                    DexSearchOutcome.FOUND_SPLIT,
                )
                if primary_or_split and not is_used_by_other_apps:
                    continue

                new_info = self.usage_ledger.record(
                    search_result.owning_package_name,
                    dex_path,
                    loader_user_id,
                    loader_isa,
                    is_used_by_other_apps,
                    primary_or_split,
                )
            if new_info:
                self.usage_ledger.maybe_write_async()

    def notify_package_installed(self, app_info: ApplicationInfo, user_id: int) -> None:
        with self._lock:
            self._cache.observe(app_info, user_id)

    # ========================================================================
    # Install-state sync
    # ========================================================================

    def load(self, existing_packages: Dict[int, List[PackageInfo]]) -> None:
        """
        Rebuild the code location cache from the installed packages, then read
        the ledger and drop records of packages/users no longer installed.

        Only packages in `existing_packages` are recognized by later load
        notifications, until they are reported through notify_package_installed.
        """
        try:
            self._load_internal(existing_packages)
        except Exception as e:
            self.usage_ledger.clear()
            logger.warning(
                f"Exception while loading package dex usage. Starting with a fresh state: {e}",
                exc_info=True,
            )

    def _load_internal(self, existing_packages: Dict[int, List[PackageInfo]]) -> None:
        cache = CodeLocationCache()
        package_to_users: Dict[str, Set[int]] = {}
        for user_id, package_infos in existing_packages.items():
            for package_info in package_infos:
                cache.observe(package_info.application_info, user_id)
                package_to_users.setdefault(package_info.package_name, set()).add(user_id)

        with self._lock:
            self._cache = cache
            self._resolver.cache = cache

        self.usage_ledger.read()
        self.usage_ledger.sync_data(package_to_users)
        logger.info(
            f"Loaded code locations of {len(cache)} packages; "
            f"{len(self.usage_ledger.get_all_packages_with_secondary_dex_files())} "
            f"packages have secondary dex files"
        )

    # ========================================================================
    # Queries
    # ========================================================================

    def get_package_use_info(self, package_name: str) -> Optional[PackageUseInfo]:
        """
        Get the package dex usage for the given package name, or None if there
        is no data for it.
        """
        return self.usage_ledger.get_package_use_info(package_name)

    def get_all_packages_with_secondary_dex_files(self) -> Set[str]:
        return self.usage_ledger.get_all_packages_with_secondary_dex_files()

    # ========================================================================
    # Secondary dex maintenance
    # ========================================================================

    def dexopt_secondary_dex(self, package_name: str, compiler_filter: str, force: bool) -> bool:
        """
        Compile the secondary dex files of `package_name`.

        Returns True if every file was compiled or skipped as up to date. Files
        of users that no longer have the package are dropped and do not count.
        """
        pdo = ForcedUpdatePackageDexOptimizer(self.dex_optimizer) if force else self.dex_optimizer

        use_info = self.get_package_use_info(package_name)
        if use_info is None or not use_info.dex_use_info_map:
            logger.debug(f"No secondary dex use for package: {package_name}")
            return True

        success = True
        updated = False
        for dex_path, dex_use_info in use_info.dex_use_info_map.items():
            package_info = self._get_package_info(package_name, dex_use_info.owner_user_id)
            if package_info is None:
                # Keep going, other users may still have the package.
                logger.debug(
                    f"Could not find package when compiling secondary dex {package_name} "
                    f"for user {dex_use_info.owner_user_id}"
                )
                updated = self.usage_ledger.remove_user_package(
                    package_name, dex_use_info.owner_user_id
                ) or updated
                continue

            try:
                result = pdo.dexopt_secondary_dex_path(
                    package_info.application_info,
                    dex_path,
                    dex_use_info.loader_isas,
                    compiler_filter,
                    dex_use_info.is_used_by_other_apps,
                )
            except Exception as e:
                logger.error(f"Unexpected error compiling {dex_path}: {e}")
                result = DexOptResult.FAILED
            success = success and result != DexOptResult.FAILED

        if updated:
            self.usage_ledger.maybe_write_async()
        return success

    def reconcile_secondary_dex_files(self, package_name: str) -> None:
        """
        Reconcile the recorded secondary dex files of `package_name` with the
        files on disk. Records of deleted files are dropped and the installer
        deletes their compiled artifacts.
        """
        use_info = self.get_package_use_info(package_name)
        if use_info is None or not use_info.dex_use_info_map:
            logger.debug(f"No secondary dex use for package: {package_name}")
            return

        updated = False
        for dex_path, dex_use_info in use_info.dex_use_info_map.items():
            owner_user_id = dex_use_info.owner_user_id
            package_info = self._get_package_info(package_name, owner_user_id)
            if package_info is None:
                logger.debug(
                    f"Could not find package when reconciling secondary dex {package_name} "
                    f"for user {owner_user_id}"
                )
                updated = self.usage_ledger.remove_user_package(package_name, owner_user_id) or updated
                continue

            app_info = package_info.application_info
            storage_flags = storage_flags_for(app_info)
            if storage_flags is None:
                logger.error(f"Could not infer CE/DE storage for package {app_info.package_name}")
                updated = self.usage_ledger.remove_user_package(package_name, owner_user_id) or updated
                continue

            dex_still_exists = True
            with self.install_lock:
                try:
                    dex_still_exists = self.installer.reconcile_secondary_dex_file(
                        dex_path,
                        package_name,
                        app_info.uid,
                        sorted(dex_use_info.loader_isas),
                        app_info.volume_uuid,
                        storage_flags,
                    )
                except InstallerError as e:
                    logger.error(f"Got InstallerError when reconciling dex {dex_path} : {e}")
                except Exception as e:
                    logger.error(f"Unexpected error reconciling dex {dex_path} : {e}")

            if not dex_still_exists:
                updated = self.usage_ledger.remove_dex_file(package_name, dex_path, owner_user_id) or updated

        if updated:
            self.usage_ledger.maybe_write_async()

    def _get_package_info(self, package_name: str, user_id: int) -> Optional[PackageInfo]:
        try:
            return self.package_registry.get_package_info(package_name, user_id)
        except Exception as e:
            logger.warning(f"Package lookup for {package_name} (user {user_id}) failed: {e}")
            return None
