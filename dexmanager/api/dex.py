"""
Dex load notifications and usage queries.

Class loaders report loaded dex files here; the endpoints answer without
waiting for the usage ledger to reach disk.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from dexmanager.core.dependencies import get_dex_manager, get_package_registry
from dexmanager.data.package_registry import JsonPackageRegistry
from dexmanager.domain.models import DexLoadRequest, PackageInstalledRequest
from dexmanager.services.dex_manager import DexManager

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/dex/load", status_code=status.HTTP_204_NO_CONTENT)
def notify_dex_load(
    body: DexLoadRequest,
    dex_manager: DexManager = Depends(get_dex_manager),
) -> Response:
    """
    Record the dex files an application just loaded.

    Always answers 204; files whose owner cannot be found are ignored.
    """
    dex_manager.notify_dex_load(body.loading_app, body.dex_paths, body.loader_isa, body.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/packages/installed", status_code=status.HTTP_204_NO_CONTENT)
def notify_package_installed(
    body: PackageInstalledRequest,
    dex_manager: DexManager = Depends(get_dex_manager),
    registry: JsonPackageRegistry = Depends(get_package_registry),
) -> Response:
    registry.add_package(body.user_id, body.application_info)
    dex_manager.notify_package_installed(body.application_info, body.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/packages/secondary-dex")
def get_packages_with_secondary_dex(
    dex_manager: DexManager = Depends(get_dex_manager),
) -> dict:
    return {"packages": sorted(dex_manager.get_all_packages_with_secondary_dex_files())}


@router.get("/packages/{package_name}/dex-usage")
def get_package_dex_usage(
    package_name: str,
    dex_manager: DexManager = Depends(get_dex_manager),
) -> dict:
    use_info = dex_manager.get_package_use_info(package_name)
    if use_info is None:
        raise HTTPException(status_code=404, detail=f"No dex usage recorded for {package_name}")
    return use_info.model_dump(mode="json")
