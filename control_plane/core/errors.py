"""
Error kinds raised by the authorization core.

Every error carries the HTTP status the API layer answers with; the
exception handler registered in main.py does the translation so services
never build HTTP responses themselves.
"""


class ControlPlaneError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    @property
    def kind(self) -> str:
        return self.__class__.__name__


# Malformed caller input

class InvalidPath(ControlPlaneError, ValueError):
    status_code = 400


class InvalidActionCode(ControlPlaneError, ValueError):
    status_code = 400


class InvalidResourceType(ControlPlaneError, ValueError):
    status_code = 400


# Referential misses

class UnknownAction(ControlPlaneError, LookupError):
    status_code = 404


class UnknownRole(ControlPlaneError, LookupError):
    status_code = 404


class UnknownRequest(ControlPlaneError, LookupError):
    status_code = 404


# Conflicts and rule violations

class DuplicateRole(ControlPlaneError):
    status_code = 409


class SystemRoleImmutable(ControlPlaneError):
    status_code = 409


class NotEffective(ControlPlaneError):
    status_code = 409


class NotAuthorized(ControlPlaneError):
    status_code = 403


class IllegalTransition(ControlPlaneError):
    status_code = 409


class CacheStale(ControlPlaneError):
    """Internal only: the role cache is missing a role an assignment references."""
    status_code = 500


class StorageError(ControlPlaneError):
    status_code = 500
