from __future__ import annotations

import enum
from pathlib import Path
from typing import Protocol


class AuthorizationStatus(str, enum.Enum):
    AUTHORIZED = "authorized"
    LIMITED = "limited"
    DENIED = "denied"
    RESTRICTED = "restricted"
    NOT_DETERMINED = "not_determined"


GRANTED_STATUSES = frozenset({AuthorizationStatus.AUTHORIZED, AuthorizationStatus.LIMITED})
REFUSED_STATUSES = frozenset({AuthorizationStatus.DENIED, AuthorizationStatus.RESTRICTED})


class MediaLibrary(Protocol):
    """A permission-gated, user-visible store of video assets."""

    def authorization_status(self) -> AuthorizationStatus: ...

    def request_authorization(self) -> AuthorizationStatus: ...

    def create_asset_from_file(self, path: Path) -> str:
        """Atomically add ``path`` to the library and return the new asset id.

        Raises ``UnsupportedFormatError`` when the file's format is rejected and
        ``CommitFailedError`` for any other failure.
        """
        ...
