"""Error codes returned to clients and the exceptions that carry them."""

from typing import Any, Dict, Optional

UNAUTHORISED = "unauthorised"
INVALID_REQUEST = "invalid_request"
NOT_FOUND = "not_found"
CONFLICT = "conflict"
CHECKSUM_MISMATCH = "checksum_mismatch"
TOO_LARGE = "too_large"
SERVER_ERROR = "server_error"
WRONG_VERSION = "wrong_version"
INVALID_CREDENTIALS = "invalid_credentials"


class SyncError(Exception):
    """
    Application-level failure rendered as {"ok": false, "error": code, "reason": ...}.
    JSON endpoints report these with HTTP 200; clients key on "ok".
    """

    def __init__(
        self,
        code: str,
        reason: str = "",
        status_code: int = 200,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(f"{code}: {reason}" if reason else code)
        self.code = code
        self.reason = reason
        self.status_code = status_code
        self.extra = extra or {}

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": False, "error": self.code}
        if self.reason:
            body["reason"] = self.reason
        body.update(self.extra)
        return body


class StorageFault(Exception):
    """Filesystem or database failure inside a store. Opaque to clients."""


class AssetNotFound(Exception):
    """Book asset row or its file is missing."""


class FileIdConflict(Exception):
    """A client-chosen file id is already stored with different content."""


class UploadOverrun(Exception):
    """The upload stream carried more bytes than the client claimed."""
