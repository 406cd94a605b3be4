from abc import ABC, abstractmethod
from typing import Dict, Optional, Set

from dexmanager.domain.models import PackageUseInfo


class UsageLedger(ABC):
    """
    Abstract base class for the durable record of dex file usage.
    """

    @abstractmethod
    def record(
        self,
        owning_package_name: str,
        dex_path: str,
        owner_user_id: int,
        loader_isa: str,
        is_used_by_other_apps: bool,
        primary_or_split: bool,
    ) -> bool:
        """
        Record a dex file load. Returns True if this brought new information
        that should be persisted.
        """
        pass

    @abstractmethod
    def read(self) -> None:
        """Replace the in-memory state with the persisted one."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Drop all in-memory state."""
        pass

    @abstractmethod
    def maybe_write_async(self) -> None:
        """Schedule a background write. Close calls are coalesced."""
        pass

    @abstractmethod
    def flush(self) -> None:
        """Synchronously write pending changes, if any."""
        pass

    @abstractmethod
    def get_package_use_info(self, package_name: str) -> Optional[PackageUseInfo]:
        """Return a copy of the usage data for a package, or None."""
        pass

    @abstractmethod
    def remove_user_package(self, package_name: str, user_id: int) -> bool:
        """Remove all dex files of `package_name` owned by `user_id`."""
        pass

    @abstractmethod
    def remove_dex_file(self, package_name: str, dex_path: str, user_id: int) -> bool:
        """Remove one dex file record if it is owned by `user_id`."""
        pass

    @abstractmethod
    def sync_data(self, package_to_users: Dict[str, Set[int]]) -> None:
        """Drop records of packages/users that are no longer installed."""
        pass

    @abstractmethod
    def get_all_packages_with_secondary_dex_files(self) -> Set[str]:
        """Names of packages that have at least one secondary dex record."""
        pass
