"""
Domain exceptions for the portal.

Services raise these instead of ``HTTPException`` so they stay usable outside
a request; ``main.py`` renders them as ``{"detail": ..., "code": ...}`` with
the matching status code.
"""

from typing import Optional, Any, Dict


class PortalError(Exception):
    """Base exception for all portal errors"""

    status_code = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"detail": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(PortalError):
    """Requested resource does not exist"""

    status_code = 404

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found" if identifier is None else f"{resource} {identifier} not found"
        super().__init__(message, code="NOT_FOUND")


class ConflictError(PortalError):
    """Resource is not in a state that allows the operation"""

    status_code = 409

    def __init__(self, message: str, code: str = "CONFLICT"):
        super().__init__(message, code=code)


class UnavailableError(ConflictError):
    """No copies of a book are left to lend"""

    def __init__(self, message: str = "Book not available. All copies are currently borrowed."):
        super().__init__(message, code="UNAVAILABLE")


class ForbiddenError(PortalError):
    """Actor does not own the resource"""

    status_code = 403

    def __init__(self, message: str = "Not allowed to modify this resource"):
        super().__init__(message, code="FORBIDDEN")


class InvalidInputError(PortalError):
    """Required fields missing or malformed"""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="INVALID_INPUT", details=details)


class ReferenceNotFoundError(PortalError):
    """A request points at a student, course, book or record that cannot be resolved"""

    status_code = 422

    def __init__(self, message: str):
        super().__init__(message, code="REFERENCE_NOT_FOUND")
