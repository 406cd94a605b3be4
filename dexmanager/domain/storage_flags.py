from typing import Optional

from dexmanager.domain.models import ApplicationInfo, StorageFlags


def storage_flags_for(app_info: ApplicationInfo) -> Optional[StorageFlags]:
    """
    Tell whether the package's data dir is device- or credential-protected.

    Returns None when the data dir matches neither; callers treat that as a
    data-integrity problem.
    """
    if app_info.data_dir == app_info.device_protected_data_dir:
        return StorageFlags.DE
    if app_info.data_dir == app_info.credential_protected_data_dir:
        return StorageFlags.CE
    return None
