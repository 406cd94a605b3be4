"""
Interfaces of the external collaborators the dex manager drives.

Concrete implementations live in `dexmanager.data`; tests substitute their own.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from dexmanager.domain.models import DexoptFlags, PackageInfo, StorageFlags


class InstallerError(Exception):
    """An installer operation failed."""


class PackageRegistry(ABC):
    """
    Source of installed package metadata.
    """

    @abstractmethod
    def get_package_info(self, package_name: str, user_id: int, flags: int = 0) -> Optional[PackageInfo]:
        """
        Look up a package installed for `user_id`. Returns None when it is not
        installed or the lookup failed.
        """
        pass

    @abstractmethod
    def get_installed_packages(self) -> Dict[int, List[PackageInfo]]:
        """Return user id -> packages installed for that user."""
        pass


class Installer(ABC):
    """
    Privileged component that owns compiled artifacts on disk.

    Not safe for concurrent use; callers hold the shared install lock.
    """

    @abstractmethod
    def dexopt(
        self,
        dex_path: str,
        uid: int,
        package_name: str,
        isa: str,
        dexopt_flags: DexoptFlags,
        compiler_filter: str,
        volume_uuid: Optional[str],
    ) -> bool:
        """
        Compile `dex_path` for `isa`. Returns True if code was generated and
        False if the existing output was kept. Raises InstallerError on failure.
        """
        pass

    @abstractmethod
    def reconcile_secondary_dex_file(
        self,
        dex_path: str,
        package_name: str,
        uid: int,
        isas: List[str],
        volume_uuid: Optional[str],
        storage_flags: StorageFlags,
    ) -> bool:
        """
        Return True if `dex_path` still exists. If it does not, its compiled
        artifacts are deleted and False is returned. Raises InstallerError.
        """
        pass
