"""
Locked reading and writing of local files shared by several threads (or processes).  The
local-disk gateway uses these so that a reader never sees a document while it is being replaced.
"""
import os, threading
from contextlib import contextmanager
try:
    import fcntl
except ImportError:
    fcntl = None

from .logging import blab, utilslog
log = utilslog

__all__ = [ 'PathLock', 'locked_open', 'read_bytes', 'write_bytes' ]

CHUNK_SIZE = 65536

class PathLock(object):
    """
    a readers-writer lock guarding one file path within this process:  any number of threads may
    hold it shared, or a single thread may hold it exclusively.  A waiting writer keeps new
    readers out.  Get the lock for a path with :py:meth:`for_path`.
    """
    _locks = {}
    _registry_lock = threading.Lock()

    @classmethod
    def for_path(cls, filepath) -> "PathLock":
        filepath = os.path.abspath(filepath)
        with cls._registry_lock:
            return cls._locks.setdefault(filepath, cls())

    def __init__(self):
        self._cond = threading.Condition()
        self.readers = 0
        self.writing = False
        self._writers_waiting = 0

    def acquire(self, exclusive: bool=False):
        with self._cond:
            if exclusive:
                self._writers_waiting += 1
                try:
                    self._cond.wait_for(lambda: not self.writing and not self.readers)
                finally:
                    self._writers_waiting -= 1
                self.writing = True
            else:
                self._cond.wait_for(lambda: not self.writing and not self._writers_waiting)
                self.readers += 1

    def release(self, exclusive: bool=False):
        with self._cond:
            if exclusive:
                self.writing = False
            elif self.readers > 0:
                self.readers -= 1
            self._cond.notify_all()

@contextmanager
def locked_open(filepath, exclusive: bool=False):
    """
    open a file in binary mode while holding its lock:  shared for reading, or exclusive for
    writing.  A file opened for writing is created if necessary but not truncated; the caller
    truncates it once the lock is held.
    """
    lock = PathLock.for_path(filepath)
    lock.acquire(exclusive)
    try:
        with open(filepath, 'ab' if exclusive else 'rb') as fd:
            if fcntl:
                fcntl.lockf(fd, fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            yield fd
    finally:
        lock.release(exclusive)

def read_bytes(filepath) -> bytes:
    """
    return the full contents of the given file

    :raise IOError:  if the file cannot be opened or read
    """
    with locked_open(filepath) as fd:
        blab(log, "Acquired shared lock for reading: %s", filepath)
        return fd.read()

def write_bytes(data, destfile):
    """
    replace the contents of a file with the given bytes (or the contents of a readable binary
    stream)
    """
    with locked_open(destfile, True) as fd:
        blab(log, "Acquired exclusive lock for writing: %s", destfile)
        fd.truncate(0)
        if hasattr(data, 'read'):
            for chunk in iter(lambda: data.read(CHUNK_SIZE), b''):
                fd.write(chunk)
        else:
            fd.write(data)
