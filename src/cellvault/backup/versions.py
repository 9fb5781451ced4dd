"""Known backup format versions and the envelope header that names them."""

from __future__ import annotations

import re
from enum import Enum

from cellvault.backup.errors import UnsupportedVersionError

HEADER_PREFIX = "CELLVAULT_BACKUP_V"

_VERSION_RE = re.compile(r"^(\d+)\.(\d+)(?:\.\d+)?$")


class FormatVersion(Enum):
    """
    Backup format versions ever issued, oldest first.

    Member order is the migration order: each version upgrades to the next.
    """

    V1_2 = "1.2"
    V1_3 = "1.3"
    V1_4 = "1.4"
    V1_5 = "1.5"

    @classmethod
    def current(cls) -> FormatVersion:
        """The version written by this release."""
        return cls.V1_5

    @classmethod
    def parse(cls, text: str) -> FormatVersion:
        """
        Parse a version string such as "1.4" or "1.4.0".

        Raises:
            UnsupportedVersionError: For unknown, future or malformed versions.
        """
        match = _VERSION_RE.match(str(text).strip())
        if match:
            short = f"{int(match.group(1))}.{int(match.group(2))}"
            for member in cls:
                if member.value == short:
                    return member
        raise UnsupportedVersionError(str(text))

    @property
    def header(self) -> str:
        """Literal header prefix, e.g. ``CELLVAULT_BACKUP_V1.5:``."""
        return f"{HEADER_PREFIX}{self.value}:"

    @property
    def ordinal(self) -> int:
        return list(FormatVersion).index(self)

    @property
    def is_current(self) -> bool:
        return self is FormatVersion.current()

    @property
    def has_integrity_tag(self) -> bool:
        """Only the current format carries an HMAC integrity tag."""
        return self.ordinal >= FormatVersion.V1_5.ordinal

    def next(self) -> FormatVersion | None:
        members = list(FormatVersion)
        position = members.index(self)
        if position + 1 < len(members):
            return members[position + 1]
        return None
