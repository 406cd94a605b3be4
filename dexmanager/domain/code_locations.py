"""
Code locations owned by installed packages.

The cache kept here maps a package name to every place the package may hold
code: its base artifact, its splits and its private data directories per user.
It is what lets the dex manager answer "who owns this path" without asking the
package registry on every load.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, Optional, Set

from dexmanager.domain.models import ApplicationInfo, DexSearchOutcome

logger = logging.getLogger(__name__)


class PackageCodeLocations:
    """
    Convenience class to store the different locations where a package might
    own code.
    """

    def __init__(self, app_info: ApplicationInfo, user_id: int):
        self.package_name = app_info.package_name
        self.base_code_path = app_info.source_dir
        self.split_code_paths: Set[str] = set(app_info.split_source_dirs or [])
        # user id -> private data directories
        self.app_data_dirs: Dict[int, Set[str]] = {}
        self.merge_app_data_dirs(app_info, user_id)

    def merge_app_data_dirs(self, app_info: ApplicationInfo, user_id: int) -> None:
        self.app_data_dirs.setdefault(user_id, set()).add(app_info.data_dir)

    def search_dex(self, dex_path: str, user_id: int) -> DexSearchOutcome:
        # A user without a data dir does not have the package at all.
        user_data_dirs = self.app_data_dirs.get(user_id)
        if user_data_dirs is None:
            logger.debug(
                f"Dex path {dex_path} checked against {self.package_name}, "
                f"which is not installed for user {user_id}"
            )
            return DexSearchOutcome.NOT_FOUND

        if dex_path == self.base_code_path:
            return DexSearchOutcome.FOUND_PRIMARY
        if dex_path in self.split_code_paths:
            return DexSearchOutcome.FOUND_SPLIT
        # Plain string prefix: /data/user/0/com.a also covers /data/user/0/com.ab/.
        for data_dir in user_data_dirs:
            if dex_path.startswith(data_dir):
                return DexSearchOutcome.FOUND_SECONDARY

        # Symlinked data dirs (e.g. /data/data -> /data/user/0) are not resolved.
        return DexSearchOutcome.NOT_FOUND


class CodeLocationCache:
    """
    Package name -> PackageCodeLocations.

    Not thread safe on its own; the dex manager serializes access.
    """

    def __init__(self) -> None:
        self._locations: Dict[str, PackageCodeLocations] = {}

    def observe(self, app_info: ApplicationInfo, user_id: int) -> None:
        """
        Record that `app_info.package_name` is installed for `user_id`.

        The first observation creates the entry; later ones only add the data
        dir of the new user. Paths of an existing entry are never replaced.
        """
        locations = self._locations.get(app_info.package_name)
        if locations is not None:
            locations.merge_app_data_dirs(app_info, user_id)
        else:
            self._locations[app_info.package_name] = PackageCodeLocations(app_info, user_id)

    def classify(self, package_name: str, dex_path: str, user_id: int) -> DexSearchOutcome:
        locations = self._locations.get(package_name)
        if locations is None:
            return DexSearchOutcome.NOT_FOUND
        return locations.search_dex(dex_path, user_id)

    def get(self, package_name: str) -> Optional[PackageCodeLocations]:
        return self._locations.get(package_name)

    def __iter__(self) -> Iterator[PackageCodeLocations]:
        return iter(list(self._locations.values()))

    def __len__(self) -> int:
        return len(self._locations)

    def __contains__(self, package_name: object) -> bool:
        return package_name in self._locations
