"""
Collaborator interfaces consumed by the backup service.

The service never reaches for global state: the host passes a record store,
an authorization gate and a file sink in at construction time.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from cellvault.storage.models import Record


class RecordStore(Protocol):
    """Key-value store of records keyed by id."""

    def get_all(self) -> dict[str, Record]: ...

    def put(self, record: Record) -> bool: ...

    def delete(self, record_id: str) -> bool: ...


class AuthorizationGate(Protocol):
    """Device authentication (biometrics, passcode) guarding backup operations."""

    def authorize(self, reason: str) -> bool: ...


class FileSink(Protocol):
    """
    Where backup files go and come from.

    ``pick`` raises OperationCancelledError when the user cancels.
    """

    def write(self, data: bytes) -> Path: ...

    def read(self, path: Path) -> bytes: ...

    def share(self, path: Path) -> None: ...

    def pick(self) -> Path: ...


class AllowAllGate:
    """Gate for hosts that authenticate the user before reaching the service."""

    def authorize(self, reason: str) -> bool:
        return True
