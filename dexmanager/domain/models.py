"""
Pydantic models for the dex usage manager.

This module defines the data models used throughout the application, including:
- Service configuration
- Installed package metadata supplied by the package registry
- Dex usage records kept by the usage ledger
- Ownership search results
- API request/response models

All models use Pydantic for validation, serialization, and type safety.
"""

from __future__ import annotations

from enum import IntEnum, IntFlag
from typing import Dict, List, NamedTuple, Optional, Set

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Service Configuration
# ---------------------------------------------------------------------------


class ServiceConfig(BaseModel):
    """
    Top-level configuration for the dex usage manager.

    Persisted at: <DATA_DIR>/dexmanager.json
    """

    supported_isas: List[str] = Field(
        default_factory=lambda: ["arm64", "arm", "x86_64", "x86"],
        description="Instruction sets this device can run. Loads reported for any other ISA are ignored.",
    )
    framework_path_prefixes: List[str] = Field(
        default_factory=lambda: ["/system/framework/"],
        description="Path prefixes of framework code. Dex files under these are never attributed to a package.",
    )
    write_interval_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Minimum delay (in seconds) between two writes of the usage ledger.",
    )
    ledger_file: str = Field(
        default="package-dex-usage.json",
        description="Usage ledger file name, relative to the data directory.",
    )
    registry_file: str = Field(
        default="packages.json",
        description="Installed package snapshot, relative to the data directory.",
    )
    compile_command: List[str] = Field(
        default_factory=list,
        description=(
            "Compiler argv template. Supports {dex_path}, {output_path}, {isa} and "
            "{compiler_filter} placeholders. Empty means no compiler is available."
        ),
    )
    default_compiler_filter: str = Field(
        default="speed-profile",
        description="Compiler filter used when a compile request does not name one.",
    )


# ---------------------------------------------------------------------------
# Package Registry Models
# ---------------------------------------------------------------------------


class ApplicationInfo(BaseModel):
    """
    Installed application metadata for one package as seen by one user.

    `data_dir` is the private storage directory the package uses by default for
    that user; it equals either the device-protected or the credential-protected
    directory.
    """

    package_name: str
    source_dir: str = Field(description="Path of the base installed artifact.")
    split_source_dirs: List[str] = Field(
        default_factory=list,
        description="Paths of additional split artifacts.",
    )
    data_dir: str
    device_protected_data_dir: Optional[str] = None
    credential_protected_data_dir: Optional[str] = None
    uid: int = 0
    volume_uuid: Optional[str] = Field(
        default=None,
        description="Storage volume the package lives on. None means internal storage.",
    )


class PackageInfo(BaseModel):
    """A package as reported by the package registry."""

    package_name: str
    application_info: ApplicationInfo


# ---------------------------------------------------------------------------
# Dex Usage Models
# ---------------------------------------------------------------------------


class DexUseInfo(BaseModel):
    """Usage facts for one secondary dex file."""

    is_used_by_other_apps: bool = False
    owner_user_id: int
    loader_isas: Set[str] = Field(default_factory=set)

    def merge(self, other: DexUseInfo) -> bool:
        """
        Merge `other` into this record. Returns True if anything changed.
        """
        if other.owner_user_id != self.owner_user_id:
            raise ValueError(
                f"Trying to change owner_user_id from {self.owner_user_id} "
                f"to {other.owner_user_id}"
            )
        changed = False
        if other.is_used_by_other_apps and not self.is_used_by_other_apps:
            self.is_used_by_other_apps = True
            changed = True
        new_isas = other.loader_isas - self.loader_isas
        if new_isas:
            self.loader_isas |= new_isas
            changed = True
        return changed


class PackageUseInfo(BaseModel):
    """
    Usage facts for one package.

    `is_used_by_other_apps` covers the primary and split artifacts;
    `dex_use_info_map` holds the secondary dex files keyed by path.
    """

    is_used_by_other_apps: bool = False
    dex_use_info_map: Dict[str, DexUseInfo] = Field(default_factory=dict)


class LedgerFile(BaseModel):
    """On-disk layout of the usage ledger."""

    version: int
    packages: Dict[str, PackageUseInfo] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Ownership Search
# ---------------------------------------------------------------------------


class DexSearchOutcome(IntEnum):
    NOT_FOUND = 0
    FOUND_PRIMARY = 1
    FOUND_SPLIT = 2
    FOUND_SECONDARY = 3


class DexSearchResult(NamedTuple):
    owning_package_name: Optional[str]
    outcome: DexSearchOutcome

    def __str__(self) -> str:
        return f"{self.owning_package_name}-{self.outcome.name}"


# ---------------------------------------------------------------------------
# Storage and Compilation Flags
# ---------------------------------------------------------------------------


class StorageFlags(IntFlag):
    DE = 1
    CE = 2


class DexoptFlags(IntFlag):
    NONE = 0
    PUBLIC = 1 << 1
    SECONDARY_DEX = 1 << 5
    FORCE = 1 << 6
    STORAGE_CE = 1 << 7
    STORAGE_DE = 1 << 8


class DexOptResult(IntEnum):
    FAILED = -1
    SKIPPED = 0
    PERFORMED = 1


# ---------------------------------------------------------------------------
# API Models
# ---------------------------------------------------------------------------


class DexLoadRequest(BaseModel):
    """
    Notification sent by an application's class loader after it opened dex files.
    """

    loading_app: ApplicationInfo = Field(description="The package performing the load.")
    dex_paths: List[str] = Field(description="Dex files being loaded, in class path order.")
    loader_isa: str = Field(description="Instruction set the loading process runs under.")
    user_id: int = Field(description="User the loading process runs as.")


class PackageInstalledRequest(BaseModel):
    application_info: ApplicationInfo
    user_id: int


class DexoptSecondaryRequest(BaseModel):
    compiler_filter: Optional[str] = Field(
        default=None,
        description="Compiler filter to use. Defaults to the configured filter.",
    )
    force: bool = Field(
        default=False,
        description="Compile even when the optimizer considers the output up to date.",
    )
