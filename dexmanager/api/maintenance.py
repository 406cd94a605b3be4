"""
Maintenance endpoints: install-state sync, secondary dex compilation and
reconciliation against the files on disk.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends

from dexmanager.core.dependencies import get_config, get_dex_manager, get_package_registry
from dexmanager.data.package_registry import JsonPackageRegistry
from dexmanager.domain.models import DexoptSecondaryRequest, ServiceConfig
from dexmanager.services.dex_manager import DexManager

router = APIRouter()


@router.post("/sync")
def sync_installed_packages(
    dex_manager: DexManager = Depends(get_dex_manager),
    registry: JsonPackageRegistry = Depends(get_package_registry),
) -> dict:
    """
    Re-read the installed package snapshot and rebuild the code location cache.
    Usage records of packages that are gone are dropped.
    """
    registry.reload()
    existing_packages = registry.get_installed_packages()
    dex_manager.load(existing_packages)
    return {
        "users": len(existing_packages),
        "packages": len(dex_manager.code_location_cache),
        "packages_with_secondary_dex": sorted(
            dex_manager.get_all_packages_with_secondary_dex_files()
        ),
    }


@router.post("/packages/{package_name}/dexopt-secondary")
def dexopt_secondary(
    package_name: str,
    body: Optional[DexoptSecondaryRequest] = Body(default=None),
    dex_manager: DexManager = Depends(get_dex_manager),
    config: ServiceConfig = Depends(get_config),
) -> dict:
    request = body or DexoptSecondaryRequest()
    compiler_filter = request.compiler_filter or config.default_compiler_filter
    success = dex_manager.dexopt_secondary_dex(package_name, compiler_filter, request.force)
    return {
        "package_name": package_name,
        "compiler_filter": compiler_filter,
        "force": request.force,
        "success": success,
    }


@router.post("/packages/{package_name}/reconcile-secondary")
def reconcile_secondary(
    package_name: str,
    dex_manager: DexManager = Depends(get_dex_manager),
) -> dict:
    dex_manager.reconcile_secondary_dex_files(package_name)
    use_info = dex_manager.get_package_use_info(package_name)
    remaining = sorted(use_info.dex_use_info_map) if use_info else []
    return {"package_name": package_name, "secondary_dex_files": remaining}
