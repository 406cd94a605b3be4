from pathlib import Path
from typing import Optional
import threading

from dexmanager.data.config import load_service_config, resolve_data_dir
from dexmanager.data.installer import FileSystemInstaller
from dexmanager.data.package_registry import JsonPackageRegistry
from dexmanager.domain.models import ServiceConfig
from dexmanager.domain.ownership import framework_prefix_predicate
from dexmanager.services.dex_manager import DexManager
from dexmanager.services.dex_optimizer import PackageDexOptimizer
from dexmanager.storage.json_usage_ledger import JsonUsageLedger
from dexmanager.storage.usage_ledger import UsageLedger

_data_dir: Optional[Path] = None
_config: Optional[ServiceConfig] = None
_usage_ledger: Optional[UsageLedger] = None
_package_registry: Optional[JsonPackageRegistry] = None
_installer: Optional[FileSystemInstaller] = None
_dex_manager: Optional[DexManager] = None

# Serializes every installer invocation in the process.
install_lock = threading.Lock()


def get_data_dir() -> Path:
    global _data_dir
    if _data_dir is None:
        _data_dir = resolve_data_dir()
    return _data_dir


def get_config() -> ServiceConfig:
    global _config
    if _config is None:
        _config = load_service_config(get_data_dir())
    return _config


def get_usage_ledger() -> UsageLedger:
    global _usage_ledger
    if _usage_ledger is None:
        config = get_config()
        _usage_ledger = JsonUsageLedger(
            get_data_dir() / config.ledger_file,
            write_interval_seconds=config.write_interval_seconds,
        )
    return _usage_ledger


def get_package_registry() -> JsonPackageRegistry:
    global _package_registry
    if _package_registry is None:
        _package_registry = JsonPackageRegistry(get_data_dir() / get_config().registry_file)
    return _package_registry


def get_installer() -> FileSystemInstaller:
    global _installer
    if _installer is None:
        config = get_config()
        _installer = FileSystemInstaller(config.supported_isas, config.compile_command)
    return _installer


def get_dex_manager() -> DexManager:
    global _dex_manager
    if _dex_manager is None:
        config = get_config()
        installer = get_installer()
        _dex_manager = DexManager(
            usage_ledger=get_usage_ledger(),
            package_registry=get_package_registry(),
            dex_optimizer=PackageDexOptimizer(installer, install_lock),
            installer=installer,
            install_lock=install_lock,
            supported_isas=config.supported_isas,
            is_framework_path=framework_prefix_predicate(config.framework_path_prefixes),
        )
    return _dex_manager
