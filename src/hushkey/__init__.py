# HushKey - Vault Backup Engine
#
# Export, restore and verify encrypted backups of a personal password vault:
# HKB containers, CSV tables and (password-protected) ZIP archives.

__version__ = "0.4.0"
__author__ = "HushKey Team"
__description__ = "Encrypted backup and restore engine for HushKey vaults"

from .core import (
    EventType,
    EventSeverity,
    get_audit_logger,
)

__all__ = [
    "__version__",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
]
