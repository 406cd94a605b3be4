"""Pytest configuration and fixtures."""
import threading
from typing import Dict, List, Optional, Set, Tuple

import pytest

from dexmanager.domain.models import ApplicationInfo, DexoptFlags, PackageInfo
from dexmanager.domain.ownership import framework_prefix_predicate
from dexmanager.services.collaborators import Installer, InstallerError, PackageRegistry
from dexmanager.services.dex_manager import DexManager
from dexmanager.services.dex_optimizer import PackageDexOptimizer
from dexmanager.storage.json_usage_ledger import JsonUsageLedger

SUPPORTED_ISAS = ["arm64", "arm"]


def build_app_info(
    package_name: str,
    user_id: int = 0,
    storage: str = "ce",
    splits: Optional[List[str]] = None,
    uid: int = 10001,
) -> ApplicationInfo:
    ce_dir = f"/data/user/{user_id}/{package_name}"
    de_dir = f"/data/user_de/{user_id}/{package_name}"
    if storage == "ce":
        data_dir = ce_dir
    elif storage == "de":
        data_dir = de_dir
    else:
        data_dir = f"/data/unknown/{user_id}/{package_name}"
    return ApplicationInfo(
        package_name=package_name,
        source_dir=f"/data/app/{package_name}/base.apk",
        split_source_dirs=splits if splits is not None else [f"/data/app/{package_name}/split_a.apk"],
        data_dir=data_dir,
        device_protected_data_dir=de_dir,
        credential_protected_data_dir=ce_dir,
        uid=uid,
    )


class FakePackageRegistry(PackageRegistry):
    def __init__(self):
        self.packages: Dict[Tuple[int, str], PackageInfo] = {}
        self.failing: Set[str] = set()

    def install(self, app_info: ApplicationInfo, user_id: int) -> PackageInfo:
        package_info = PackageInfo(package_name=app_info.package_name, application_info=app_info)
        self.packages[(user_id, app_info.package_name)] = package_info
        return package_info

    def uninstall(self, package_name: str, user_id: int) -> None:
        self.packages.pop((user_id, package_name), None)

    def get_package_info(self, package_name, user_id, flags=0):
        if package_name in self.failing:
            raise RuntimeError("registry unavailable")
        return self.packages.get((user_id, package_name))

    def get_installed_packages(self):
        result: Dict[int, List[PackageInfo]] = {}
        for (user_id, _), package_info in self.packages.items():
            result.setdefault(user_id, []).append(package_info)
        return result


class FakeInstaller(Installer):
    def __init__(self):
        self.existing_files: Set[str] = set()
        self.dexopt_calls: List[dict] = []
        self.reconcile_calls: List[dict] = []
        self.compiles = True
        self.failing_paths: Set[str] = set()

    def dexopt(self, dex_path, uid, package_name, isa, dexopt_flags, compiler_filter, volume_uuid):
        self.dexopt_calls.append(
            {
                "dex_path": dex_path,
                "package_name": package_name,
                "isa": isa,
                "flags": dexopt_flags,
                "compiler_filter": compiler_filter,
            }
        )
        if dex_path in self.failing_paths:
            raise InstallerError(f"cannot compile {dex_path}")
        return self.compiles or bool(dexopt_flags & DexoptFlags.FORCE)

    def reconcile_secondary_dex_file(self, dex_path, package_name, uid, isas, volume_uuid, storage_flags):
        self.reconcile_calls.append(
            {
                "dex_path": dex_path,
                "package_name": package_name,
                "isas": list(isas),
                "storage_flags": storage_flags,
            }
        )
        if dex_path in self.failing_paths:
            raise InstallerError(f"cannot reconcile {dex_path}")
        return dex_path in self.existing_files


class CountingLedger(JsonUsageLedger):
    """Ledger that counts write requests instead of starting background writes."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.write_requests = 0

    def maybe_write_async(self) -> None:
        self.write_requests += 1


@pytest.fixture
def make_app_info():
    return build_app_info


@pytest.fixture
def ledger(tmp_path):
    return CountingLedger(tmp_path / "package-dex-usage.json", write_interval_seconds=0)


@pytest.fixture
def registry():
    return FakePackageRegistry()


@pytest.fixture
def installer():
    return FakeInstaller()


@pytest.fixture
def install_lock():
    return threading.Lock()


@pytest.fixture
def dex_manager(ledger, registry, installer, install_lock):
    return DexManager(
        usage_ledger=ledger,
        package_registry=registry,
        dex_optimizer=PackageDexOptimizer(installer, install_lock),
        installer=installer,
        install_lock=install_lock,
        supported_isas=SUPPORTED_ISAS,
        is_framework_path=framework_prefix_predicate(["/system/framework/"]),
    )


@pytest.fixture
def installed(registry, dex_manager):
    """Install a package for a user in both the registry and the dex manager."""

    def _install(app_info: ApplicationInfo, user_id: int = 0) -> ApplicationInfo:
        registry.install(app_info, user_id)
        dex_manager.notify_package_installed(app_info, user_id)
        return app_info

    return _install
