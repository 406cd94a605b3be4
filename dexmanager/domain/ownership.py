"""
Resolution of the package that owns a dex file.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from dexmanager.domain.code_locations import CodeLocationCache, PackageCodeLocations
from dexmanager.domain.models import ApplicationInfo, DexSearchOutcome, DexSearchResult

logger = logging.getLogger(__name__)

FrameworkPathPredicate = Callable[[str], bool]

NOT_FOUND = DexSearchResult(None, DexSearchOutcome.NOT_FOUND)


def framework_prefix_predicate(prefixes: Iterable[str]) -> FrameworkPathPredicate:
    """
    Build a predicate that recognizes framework code by path prefix.
    """
    prefix_tuple = tuple(p for p in prefixes if p)

    def is_framework_path(dex_path: str) -> bool:
        return bool(prefix_tuple) and dex_path.startswith(prefix_tuple)

    return is_framework_path


class OwnershipResolver:
    """
    Finds the package owning a dex path.

    The loading package is checked first since most loads are of its own code.
    Otherwise every cached package is scanned and the first match wins.
    """

    def __init__(self, cache: CodeLocationCache, is_framework_path: FrameworkPathPredicate):
        self.cache = cache
        self.is_framework_path = is_framework_path

    def resolve(
        self,
        loading_app_info: ApplicationInfo,
        dex_path: str,
        user_id: int,
    ) -> DexSearchResult:
        try:
            return self._resolve(loading_app_info, dex_path, user_id)
        except Exception as e:
            logger.warning(f"Failed to resolve owner of {dex_path}: {e}")
            return NOT_FOUND

    def _resolve(
        self,
        loading_app_info: ApplicationInfo,
        dex_path: str,
        user_id: int,
    ) -> DexSearchResult:
        if self.is_framework_path(dex_path):
            return NOT_FOUND

        loading_locations = PackageCodeLocations(loading_app_info, user_id)
        outcome = loading_locations.search_dex(dex_path, user_id)
        if outcome != DexSearchOutcome.NOT_FOUND:
            return DexSearchResult(loading_locations.package_name, outcome)

        # Reverse lookup. Can give false negatives while the cache is stale.
        for locations in self.cache:
            outcome = locations.search_dex(dex_path, user_id)
            if outcome != DexSearchOutcome.NOT_FOUND:
                return DexSearchResult(locations.package_name, outcome)

        return NOT_FOUND
