"""
Foundational definitions shared by all of the ``lyreteams`` packages:  the base exception classes
and (via :py:mod:`lyreteams.base.config`) the configuration and logging set-up utilities.
"""
try:
    from .version import __version__
except ImportError:
    __version__ = "(unset)"

class LyreTeamsException(Exception):
    """
    a base class for all exceptions raised by the ``lyreteams`` packages
    """
    def __init__(self, message=None, cause=None):
        """
        create the exception
        :param str message:    a description of the problem
        :param Exception cause:  an exception that represents the underlying cause of the problem
        """
        if not message:
            message = str(cause) if cause else "Unknown LyreTeams exception occurred"
        super(LyreTeamsException, self).__init__(message)
        self.cause = cause
