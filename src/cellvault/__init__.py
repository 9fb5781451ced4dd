"""
CellVault - local-first vault for named digit grids.

Each record is a named 8x5 grid of coloured cells, some of which hold secret
digits hidden among decoys. The interesting part of the package is the
backup subsystem: records are exported into a versioned, password-encrypted
envelope and can be restored later, including backups written by older
releases with different schemas.

Key Features:
    - Password-based key derivation (PBKDF2-HMAC-SHA256)
    - HMAC integrity tag separating wrong passwords from corrupt files
    - Migration of legacy backup payloads (1.2 through 1.4)
    - Restore merge policies (replace all, overwrite, skip existing)
"""

__version__ = "1.6.0"
__author__ = ""
__email__ = ""

from cellvault.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
