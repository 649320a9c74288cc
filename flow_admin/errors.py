"""Error taxonomy for the flow administration API.

Two families live here:

- ``FlowApiError`` and subclasses: what callers of the service see. Each
  carries an HTTP-convention ``status``, an optional string ``code`` and a
  ``message``. The HTTP layer renders them as ``{"code", "message"}``.
- ``FlowStoreError`` and ``FlowNotFoundError``: raised by a store at its
  boundary. The service translates them into API errors.
"""

from __future__ import annotations

from typing import Any


class FlowApiError(Exception):
    """Base class for errors surfaced to API callers."""

    status: int = 500
    default_code: str | None = None

    def __init__(
        self,
        message: str = "",
        *,
        code: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code if code is not None else self.default_code
        if status is not None:
            self.status = status

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"message": self.message}
        if self.code:
            body["code"] = self.code
        return body


class VersionConflict(FlowApiError):
    """The submitted flow set was read at a revision that is no longer current."""

    status = 409
    default_code = "version_mismatch"


class NotFound(FlowApiError):
    status = 404
    default_code = "not_found"


class ValidationFailed(FlowApiError):
    """The store rejected the payload."""

    status = 400
    default_code = "unexpected_error"


# ---------------------------------------------------------------------------
# Store boundary
# ---------------------------------------------------------------------------


class FlowStoreError(Exception):
    """A store rejected an operation. ``code`` is store-defined."""

    def __init__(self, message: str = "", code: Any = None) -> None:
        super().__init__(message)
        self.code = code


class FlowNotFoundError(FlowStoreError):
    """The referenced flow id does not exist in the store."""

    def __init__(self, flow_id: str) -> None:
        super().__init__(f"Unknown flow: {flow_id}", code="not_found")
        self.flow_id = flow_id


def is_not_found(exc: BaseException) -> bool:
    """True for store errors meaning "unknown id".

    Accepts the tagged ``FlowNotFoundError`` as well as stores that signal the
    same thing with a bare numeric ``code`` of 404.
    """
    if isinstance(exc, FlowNotFoundError):
        return True
    return getattr(exc, "code", None) == 404


def store_error_code(exc: BaseException) -> str:
    """Return the store's error code as a string, or ``unexpected_error``."""
    code = getattr(exc, "code", None)
    return str(code) if code else "unexpected_error"
