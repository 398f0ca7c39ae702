"""
Simulated remote stores for testing the catalog service and its components:  LocalDiskGateway
subclasses that can be told to fail or corrupt selected operations.
"""
from collections import Counter

from .gateway import LocalDiskGateway
from .exceptions import RemoteCommError

class FaultyGateway(LocalDiskGateway):
    """
    a LocalDiskGateway whose operations can be made to fail on demand.  Call :py:meth:`fail` to
    make an operation raise an exception; calls are counted in ``calls``.
    """
    OPS = ("exists", "read", "write", "list", "delete", "copy", "move", "ensure_directory")

    def __init__(self, rootdir, log=None):
        super(FaultyGateway, self).__init__({'local_root': rootdir}, log)
        self.calls = Counter()
        self._faults = {}
        self.writes = []

    def fail(self, op, times=-1, exc=None, match=None):
        """
        make the named operation fail.

        :param str    op:  the operation name (e.g. "write")
        :param int times:  the number of calls to fail; a negative value fails indefinitely
        :param exc:        the exception to raise (default: a RemoteCommError)
        :param str match:  only fail calls whose first argument contains this string
        """
        if op not in self.OPS:
            raise ValueError("Unknown gateway operation: "+op)
        self._faults[op] = [times, exc, match]

    def heal(self, op=None):
        """
        stop failing the named operation (or all operations)
        """
        if op:
            self._faults.pop(op, None)
        else:
            self._faults.clear()

    def _check(self, op, path):
        self.calls[op] += 1
        fault = self._faults.get(op)
        if not fault:
            return
        times, exc, match = fault
        if match and match not in path:
            return
        if times == 0:
            return
        if times > 0:
            fault[0] -= 1
        if exc is None:
            exc = RemoteCommError("Simulated failure: "+op, path)
        raise exc

    def exists(self, path):
        self._check("exists", path)
        return super(FaultyGateway, self).exists(path)

    def read(self, path):
        self._check("read", path)
        return super(FaultyGateway, self).read(path)

    def write(self, path, data, overwrite=True):
        self._check("write", path)
        super(FaultyGateway, self).write(path, data, overwrite)
        self.writes.append(path)

    def list(self, folder):
        self._check("list", folder)
        return super(FaultyGateway, self).list(folder)

    def delete(self, path):
        self._check("delete", path)
        super(FaultyGateway, self).delete(path)

    def copy(self, src, dest):
        self._check("copy", src)
        super(FaultyGateway, self).copy(src, dest)

    def move(self, src, dest):
        self._check("move", src)
        super(FaultyGateway, self).move(src, dest)

    def ensure_directory(self, path):
        self._check("ensure_directory", path)
        super(FaultyGateway, self).ensure_directory(path)


class CorruptingGateway(FaultyGateway):
    """
    a FaultyGateway that silently replaces the content of writes to paths containing a given
    string (to simulate a store that does not keep what it was given)
    """
    def __init__(self, rootdir, log=None):
        super(CorruptingGateway, self).__init__(rootdir, log)
        self.corrupt = None

    def write(self, path, data, overwrite=True):
        if self.corrupt and self.corrupt in path:
            data = b"[]"
        super(CorruptingGateway, self).write(path, data, overwrite)


class TruncatingGateway(FaultyGateway):
    """
    a FaultyGateway whose writes to paths containing a given string store only the first half
    of the data before failing (to simulate a connection dropped in mid-upload)
    """
    def __init__(self, rootdir, log=None):
        super(TruncatingGateway, self).__init__(rootdir, log)
        self.truncate = None

    def write(self, path, data, overwrite=True):
        if self.truncate and self.truncate in path:
            data = bytes(data)
            super(TruncatingGateway, self).write(path, data[:len(data)//2], overwrite)
            raise RemoteCommError("connection dropped during upload", path)
        super(TruncatingGateway, self).write(path, data, overwrite)
