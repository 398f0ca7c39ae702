"""
The remote object gateway:  the narrow interface through which the catalog accesses the store
holding file bytes and metadata documents.

:py:class:`RemoteGateway` defines the contract.  Two implementations are available:
:py:class:`LocalDiskGateway` (in this module), which keeps objects under a directory on local
disk, and :py:class:`~lyreteams.store.webdav.WebDAVGateway`, which talks to a WebDAV service
(e.g. Nextcloud).  Use :py:func:`create_gateway` to instantiate the one selected by the
configuration.

All paths are slash-delimited and relative to the root of the store.  Every operation may raise a
:py:class:`~lyreteams.store.exceptions.RemoteError`; none should be assumed to be atomic with
respect to any other.
"""
import io, os, shutil, logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from collections import OrderedDict
from datetime import datetime, timezone
from pathlib import Path
from typing import List, BinaryIO

from ..base.config import ConfigurationException
from ..utils.io import read_bytes, write_bytes
from .exceptions import RemoteNotFound, RemoteClientError, RemoteServerError

class RemoteGateway(ABC):
    """
    the interface to a store of named objects organized into folders
    """

    @abstractmethod
    def exists(self, path: str) -> bool:
        """
        return True if an object or folder exists at the given path
        """
        raise NotImplementedError()

    @abstractmethod
    def read(self, path: str) -> BinaryIO:
        """
        return the contents of the object at the given path as a readable binary stream.  The
        caller should close the stream when done.

        :raises RemoteNotFound:  if no object exists at the path
        """
        raise NotImplementedError()

    @abstractmethod
    def write(self, path: str, data, overwrite: bool=True):
        """
        write the given content (bytes or a readable binary stream) to the given path.  The
        parent folder must already exist.

        :raises RemoteClientError:  if an object already exists at the path and ``overwrite``
                                    is False
        """
        raise NotImplementedError()

    @abstractmethod
    def list(self, folder: str) -> List[Mapping]:
        """
        list the contents of a folder.  Each item in the returned list is a dictionary with the
        properties ``name`` (the basename), ``size`` (in bytes), ``modified`` (an ISO 8601
        string or None), and ``kind`` (either "file" or "folder").  The folder itself is not
        included.

        :raises RemoteNotFound:  if the folder does not exist
        """
        raise NotImplementedError()

    @abstractmethod
    def delete(self, path: str):
        """
        delete the object (or folder) at the given path; nothing is done if it does not exist.
        """
        raise NotImplementedError()

    @abstractmethod
    def copy(self, src: str, dest: str):
        """
        copy the object at ``src`` to ``dest``, replacing anything already there
        """
        raise NotImplementedError()

    @abstractmethod
    def move(self, src: str, dest: str):
        """
        move the object at ``src`` to ``dest``, replacing anything already there
        """
        raise NotImplementedError()

    @abstractmethod
    def ensure_directory(self, path: str):
        """
        ensure that a folder exists at the given path, creating it (but not its parents) if
        necessary.
        """
        raise NotImplementedError()

    def read_bytes(self, path: str) -> bytes:
        """
        return the full contents of the object at the given path
        """
        fd = self.read(path)
        try:
            return fd.read()
        finally:
            fd.close()


class LocalDiskGateway(RemoteGateway):
    """
    a gateway that stores objects as files under a root directory on local disk.

    This class looks for the following configuration parameters:

    ``local_root``
        _str_ (required).  the directory that serves as the root of the store.  It will be
        created if it does not exist.

    :param dict config:  the configuration dictionary
    :param Logger  log:  the Logger to use for log messages
    """

    def __init__(self, config: Mapping, log: logging.Logger=None):
        if not log:
            log = logging.getLogger("lyreteams.store.local")
        self.log = log
        self.cfg = config

        if not config.get('local_root'):
            raise ConfigurationException("LocalDiskGateway: Missing required config parameter: "+
                                         "local_root", param="local_root")
        self.rootdir = Path(config['local_root'])
        try:
            self.rootdir.mkdir(parents=True, exist_ok=True)
        except OSError as ex:
            raise ConfigurationException("%s: unable to create storage root: %s" %
                                         (str(self.rootdir), str(ex)), cause=ex) from ex

    def _fspath(self, path: str) -> Path:
        parts = [p for p in path.replace('\\', '/').split('/') if p and p != '.']
        if '..' in parts:
            raise RemoteClientError("Illegal path: "+path, path, 400)
        return self.rootdir.joinpath(*parts)

    def exists(self, path):
        return self._fspath(path).exists()

    def read(self, path):
        fspath = self._fspath(path)
        if not fspath.is_file():
            raise RemoteNotFound(path)
        try:
            return io.BytesIO(read_bytes(str(fspath)))
        except OSError as ex:
            raise RemoteServerError("Failed to read object: "+str(ex), path, cause=ex) from ex

    def write(self, path, data, overwrite=True):
        fspath = self._fspath(path)
        if fspath.is_dir():
            raise RemoteClientError("Unable to write object: path is a folder", path, 409)
        if fspath.exists() and not overwrite:
            raise RemoteClientError("Unable to write object: already exists", path, 412)
        if not fspath.parent.is_dir():
            raise RemoteClientError("Unable to write object: parent folder does not exist", path, 409)
        try:
            write_bytes(data, str(fspath))
        except OSError as ex:
            raise RemoteServerError("Failed to write object: "+str(ex), path, cause=ex) from ex

    def list(self, folder):
        fspath = self._fspath(folder)
        if not fspath.is_dir():
            raise RemoteNotFound(folder)

        out = []
        try:
            for child in sorted(fspath.iterdir()):
                st = child.stat()
                out.append(OrderedDict([
                    ('name', child.name),
                    ('size', st.st_size if child.is_file() else 0),
                    ('modified', datetime.fromtimestamp(st.st_mtime, timezone.utc)
                                         .isoformat(timespec='milliseconds')),
                    ('kind', (child.is_dir() and "folder") or "file")
                ]))
        except OSError as ex:
            raise RemoteServerError("Failed to list folder: "+str(ex), folder, cause=ex) from ex
        return out

    def delete(self, path):
        fspath = self._fspath(path)
        try:
            if fspath.is_dir():
                shutil.rmtree(fspath)
            elif fspath.exists():
                fspath.unlink()
        except OSError as ex:
            raise RemoteServerError("Failed to delete resource: "+str(ex), path, cause=ex) from ex

    def copy(self, src, dest):
        srcpath = self._fspath(src)
        if not srcpath.is_file():
            raise RemoteNotFound(src)
        destpath = self._fspath(dest)
        if not destpath.parent.is_dir():
            raise RemoteClientError("Unable to copy: destination folder does not exist", dest, 409)
        try:
            shutil.copy2(srcpath, destpath)
        except OSError as ex:
            raise RemoteServerError("Failed to copy resource: "+str(ex), src, cause=ex) from ex

    def move(self, src, dest):
        srcpath = self._fspath(src)
        if not srcpath.exists():
            raise RemoteNotFound(src)
        destpath = self._fspath(dest)
        if not destpath.parent.is_dir():
            raise RemoteClientError("Unable to move: destination folder does not exist", dest, 409)
        try:
            os.replace(srcpath, destpath)
        except OSError as ex:
            raise RemoteServerError("Failed to move resource: "+str(ex), src, cause=ex) from ex

    def ensure_directory(self, path):
        fspath = self._fspath(path)
        if fspath.is_file():
            raise RemoteClientError("Unable to create folder: a file exists at the path", path, 405)
        if not fspath.parent.is_dir():
            raise RemoteNotFound(path, "Unable to create folder: parent does not exist")
        try:
            fspath.mkdir(exist_ok=True)
        except OSError as ex:
            raise RemoteServerError("Failed to create folder: "+str(ex), path, cause=ex) from ex


def create_gateway(config: Mapping, log: logging.Logger=None) -> RemoteGateway:
    """
    instantiate the gateway selected by the given storage configuration.  The ``type`` parameter
    selects the implementation:  "local" for :py:class:`LocalDiskGateway` or "webdav" for
    :py:class:`~lyreteams.store.webdav.WebDAVGateway` (configured by the ``webdav`` parameter).

    :param dict config:  the ``storage`` configuration
    :param Logger  log:  the Logger to pass to the gateway
    :raises ConfigurationException:  if the type is missing or unrecognized
    """
    stype = config.get('type')
    if stype == "local":
        return LocalDiskGateway(config, log)
    if stype == "webdav":
        from .webdav import WebDAVGateway
        return WebDAVGateway(config.get('webdav', {}), log)
    if not stype:
        raise ConfigurationException("storage: missing required config parameter: type",
                                     param="storage.type")
    raise ConfigurationException("storage.type: unrecognized storage type: "+str(stype),
                                 param="storage.type")
