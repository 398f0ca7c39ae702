"""
Customized exceptions that allow code to handle error conditions.

Two families are defined here.  The :py:class:`RemoteError` family is raised by the remote object
gateways (:py:mod:`~lyreteams.store.gateway`, :py:mod:`~lyreteams.store.webdav`) and describes
what went wrong while talking to the remote store.  The :py:class:`CatalogException` family is
raised by the catalog service to its callers (e.g. a web route layer) and is meant to be mapped
directly onto responses:

  * :py:class:`ValidationError` -- bad caller input (never retried)
  * :py:class:`ObjectNotFound` -- the requested entity does not exist (or was soft-deleted)
  * :py:class:`Forbidden` -- an attempt to mutate a protected entity
  * :py:class:`RemoteUnavailable` -- the remote store could not be reached or timed out
  * :py:class:`NameConflict` -- a name is already in use
  * :py:class:`PersistenceFailure` -- a state document could not be saved after all retries
"""
from ..base import LyreTeamsException

class StorageException(LyreTeamsException):
    """
    a base class for all exceptions raised by the storage layer
    """
    pass


class RemoteError(StorageException):
    """
    an exception indicating an error occurred while accessing the remote object store.

    This class serves as a base class for more specific remote access errors.
    """

    def __init__(self, message: str=None, path: str=None, code: int=0, cause: Exception=None):
        """
        create the exception

        :param str message:  an explanation of the cause of the error
        :param str path:     the remote path that was being accessed
        :param int code:     the HTTP response code that was returned (if the service responded)
        :param Exception cause:  the underlying (transport-level) exception
        """
        if not message:
            message = "Error accessing remote store"
            if path:
                message += f" at {path}"
            if code:
                message += f" ({str(code)})"
        super(RemoteError, self).__init__(message, cause)
        self.path = path
        self.code = code or 0


class RemoteCommError(RemoteError):
    """
    an error indicating a failure communicating with the remote store.  This error typically
    covers network related errors, like failures to connect, dropped connections, timeouts, DNS
    errors, etc.  Typically, the remote service did not get a chance to respond to the request.
    """
    def __init__(self, message: str=None, path: str=None, cause: Exception=None):
        if not message:
            message = "Remote store communication failure"
            if path:
                message += f" while accessing {path}"
        super(RemoteCommError, self).__init__(message, path, 0, cause)


class RemoteServerError(RemoteError):
    """
    an error indicating a server-side error during a request to the remote store (i.e. code >= 500,
    insufficient storage, or a response that could not be parsed).
    """
    def __init__(self, message: str=None, path: str=None, code: int=0, cause: Exception=None):
        if not message:
            message = "Unexpected remote server error"
            if path:
                message += f" while accessing {path}"
            if code:
                message += f": HTTP code: {str(code)}"
        super(RemoteServerError, self).__init__(message, path, code, cause)


class RemoteClientError(RemoteError):
    """
    an error indicating a client-side error during a request to the remote store.  This error
    typically indicates that the request was improper for the current state of the store
    (i.e. code >= 400, < 500).
    """
    def __init__(self, message: str=None, path: str=None, code: int=0, cause: Exception=None):
        if not message:
            message = "Bad request made to remote store"
            if code:
                message += f" ({str(code)})"
            if path:
                message += f" at {path}"
        super(RemoteClientError, self).__init__(message, path, code, cause)


class RemoteNotFound(RemoteClientError):
    """
    an error indicating that the resource (file or folder) requested from the remote store does
    not exist.  This typically captures a 404 response.
    """
    def __init__(self, path: str=None, message: str=None, cause: Exception=None, code: int=404):
        if not message:
            message = "Remote resource not found"
            if path:
                message += f": {path}"
        super(RemoteNotFound, self).__init__(message, path, code, cause)


class CatalogException(LyreTeamsException):
    """
    a base class for errors reported by the catalog service to its callers
    """
    pass


class ValidationError(CatalogException):
    """
    an exception indicating that the input provided by a caller is incomplete or illegal
    """
    def __init__(self, message: str=None, errors: list=None):
        """
        create the exception
        :param str message:  a summary of the problem
        :param list errors:  the individual validation problems detected
        """
        self.errors = list(errors) if errors else []
        if not message:
            message = "Invalid input"
            if self.errors:
                message += ": " + "; ".join(self.errors)
        super(ValidationError, self).__init__(message)


class ObjectNotFound(CatalogException):
    """
    an exception indicating that the requested catalog entity does not exist
    """
    def __init__(self, what: str, ident=None, message: str=None):
        """
        create the exception
        :param str what:   the type of entity that was requested (e.g. "file", "account")
        :param ident:      the identifier that was requested
        :param str message:  a custom explanation (optional)
        """
        if not message:
            message = f"Requested {what} not found"
            if ident is not None:
                message += f": {ident}"
        super(ObjectNotFound, self).__init__(message)
        self.what = what
        self.ident = ident


class Forbidden(CatalogException):
    """
    an exception indicating an attempt to carry out an operation that is never allowed on the
    target entity (e.g. deleting the primordial administrator account).
    """
    def __init__(self, op: str, target: str=None, message: str=None):
        if not message:
            message = f"Operation not permitted: {op}"
            if target:
                message += f" on {target}"
        super(Forbidden, self).__init__(message)
        self.op = op
        self.target = target


class RemoteUnavailable(CatalogException):
    """
    an exception indicating that the remote store could not be reached, timed out, or failed
    while servicing a request.  The underlying :py:class:`RemoteError` is available via the
    ``cause`` attribute.
    """
    def __init__(self, message: str=None, cause: Exception=None):
        if not message:
            message = "Remote store is unavailable"
            if cause:
                message += ": " + str(cause)
        super(RemoteUnavailable, self).__init__(message, cause)


class NameConflict(CatalogException):
    """
    an exception indicating that a requested name is already in use by another entity
    """
    def __init__(self, name: str, what: str="name", message: str=None):
        if not message:
            message = f"{what} already in use: {name}"
        super(NameConflict, self).__init__(message)
        self.name = name


class PersistenceFailure(CatalogException):
    """
    an exception indicating that a state document could not be written to the remote store,
    even after retrying.  An operation that raises this exception did not take effect.
    """
    def __init__(self, path: str, attempts: int=0, message: str=None, cause: Exception=None):
        if not message:
            message = f"Failed to persist {path}"
            if attempts:
                message += f" after {attempts} attempts"
            if cause:
                message += ": " + str(cause)
        super(PersistenceFailure, self).__init__(message, cause)
        self.path = path
        self.attempts = attempts
