"""Exceptions raised by the procscope command surface."""


class ProcscopeError(Exception):
    """Base class for all procscope errors."""

    kind = "error"


class InvalidRequest(ProcscopeError, ValueError):
    """The request arguments were rejected before touching the OS."""

    kind = "invalid_request"


class ProcessNotFound(ProcscopeError, LookupError):
    """The pid vanished before the operation could act on it."""

    kind = "not_found"

    def __init__(self, pid: int) -> None:
        super().__init__(f"Process {pid} was not found")
        self.pid = pid


class PermissionDenied(ProcscopeError, PermissionError):
    """The host refused the query or signal for lack of privilege."""

    kind = "permission_denied"

    def __init__(self, pid: int, detail: str = "access denied") -> None:
        super().__init__(f"Process {pid}: {detail}")
        self.pid = pid


class InvocationFailure(ProcscopeError):
    """The transport failed to reach the core; reported verbatim."""

    kind = "invocation_failure"
