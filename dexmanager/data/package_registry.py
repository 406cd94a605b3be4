"""
Installed package snapshot backed by a JSON file.

Layout of <DATA_DIR>/packages.json:

    {"users": {"0": [PackageInfo, ...], "10": [...]}}
"""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from dexmanager.domain.models import ApplicationInfo, PackageInfo
from dexmanager.services.collaborators import PackageRegistry

logger = logging.getLogger(__name__)


class RegistrySnapshot(BaseModel):
    users: Dict[int, List[PackageInfo]] = Field(default_factory=dict)


class JsonPackageRegistry(PackageRegistry):
    """Package registry read from (and updated in) a JSON file."""

    def __init__(self, registry_path: Path):
        self.registry_path = registry_path
        self._lock = threading.Lock()
        self._snapshot = RegistrySnapshot()
        self.reload()

    def reload(self) -> None:
        """Load the snapshot from disk. A missing or malformed file gives an empty registry."""
        snapshot = RegistrySnapshot()
        if self.registry_path.exists():
            try:
                raw = json.loads(self.registry_path.read_text(encoding="utf-8"))
                snapshot = RegistrySnapshot.model_validate(raw)
            except Exception as e:
                logger.warning(f"Failed to load package registry from {self.registry_path}: {e}")
        with self._lock:
            self._snapshot = snapshot

    def _save(self) -> None:
        self.registry_path.parent.mkdir(parents=True, exist_ok=True)
        self.registry_path.write_text(self._snapshot.model_dump_json(indent=2), encoding="utf-8")

    def get_package_info(self, package_name: str, user_id: int, flags: int = 0) -> Optional[PackageInfo]:
        with self._lock:
            for package_info in self._snapshot.users.get(user_id, []):
                if package_info.package_name == package_name:
                    return package_info.model_copy(deep=True)
        return None

    def get_installed_packages(self) -> Dict[int, List[PackageInfo]]:
        with self._lock:
            return {
                user_id: [p.model_copy(deep=True) for p in packages]
                for user_id, packages in self._snapshot.users.items()
            }

    def add_package(self, user_id: int, app_info: ApplicationInfo) -> PackageInfo:
        """
        Add or replace the package for `user_id` and persist the snapshot.
        """
        package_info = PackageInfo(package_name=app_info.package_name, application_info=app_info)
        with self._lock:
            packages = self._snapshot.users.setdefault(user_id, [])
            packages[:] = [p for p in packages if p.package_name != app_info.package_name]
            packages.append(package_info)
            self._save()
        return package_info
