"""
Installer working directly on the local filesystem.

Compiled output of a secondary dex file lives next to it:

    <dex dir>/oat/<isa>/<dex stem>.odex
"""
from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional

from dexmanager.domain.models import DexoptFlags, StorageFlags
from dexmanager.services.collaborators import Installer, InstallerError

logger = logging.getLogger(__name__)


def oat_file_path(dex_path: str, isa: str) -> Path:
    dex = Path(dex_path)
    return dex.parent / "oat" / isa / f"{dex.stem}.odex"


class FileSystemInstaller(Installer):
    def __init__(self, supported_isas: Iterable[str], compile_command: Optional[List[str]] = None):
        self.supported_isas = frozenset(supported_isas)
        self.compile_command = list(compile_command or [])

    def _check_isa(self, isa: str) -> None:
        if isa not in self.supported_isas:
            raise InstallerError(f"Invalid instruction set: {isa}")

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
        self._check_isa(isa)
        dex = Path(dex_path)
        if not dex.is_file():
            raise InstallerError(f"Dex file does not exist: {dex_path}")

        output_path = oat_file_path(dex_path, isa)
        force = bool(dexopt_flags & DexoptFlags.FORCE)
        if not force and output_path.is_file():
            if output_path.stat().st_mtime >= dex.stat().st_mtime:
                logger.debug(f"{output_path} is up to date, skipping")
                return False

        if not self.compile_command:
            raise InstallerError("No compiler configured")

        argv = [
            arg.format(
                dex_path=dex_path,
                output_path=str(output_path),
                isa=isa,
                compiler_filter=compiler_filter,
            )
            for arg in self.compile_command
        ]
        output_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Compiling {dex_path} of {package_name} for {isa} ({compiler_filter})")
        try:
            subprocess.run(argv, check=True, capture_output=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise InstallerError(f"Compiler failed for {dex_path}: {e}") from e
        return True

    def reconcile_secondary_dex_file(
        self,
        dex_path: str,
        package_name: str,
        uid: int,
        isas: List[str],
        volume_uuid: Optional[str],
        storage_flags: StorageFlags,
    ) -> bool:
        if not isas:
            raise InstallerError(f"No instruction sets given for {dex_path}")
        for isa in isas:
            self._check_isa(isa)
        if storage_flags not in (StorageFlags.DE, StorageFlags.CE):
            raise InstallerError(f"Invalid storage flags {int(storage_flags)} for {dex_path}")

        if Path(dex_path).exists():
            return True

        for isa in isas:
            oat_file = oat_file_path(dex_path, isa)
            try:
                oat_file.unlink(missing_ok=True)
            except OSError as e:
                raise InstallerError(f"Failed to delete {oat_file}: {e}") from e
        logger.info(f"Secondary dex {dex_path} of {package_name} is gone, removed compiled output")
        return False
