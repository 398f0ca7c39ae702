"""
Durable persistence of state documents (the catalog, the account list, the audit log) to the
remote store.

:py:class:`DocumentPersister` implements the write protocol:

  1. if the document already exists, copy it to a backup (failures are logged, not fatal);
  2. write the new content, retrying with exponential backoff on failure and raising
     :py:class:`~lyreteams.store.exceptions.PersistenceFailure` when the attempts are exhausted;
  3. after a short pause, read the document back and compare its structure to what was written,
     logging a warning on any mismatch.

Two backup styles are supported:  a single sibling backup (``accounts.json`` is copied to
``accounts.backup.json``) and rotating, timestamped backups (``logs.json`` is copied to
``logs_backup_<epoch-ms>.json``, keeping only the most recent few).

:py:class:`BackgroundWriter` runs persistence jobs on a single worker thread for callers that do
not need to wait for the write to complete.
"""
import logging, queue, threading, time, re
from collections.abc import Mapping
from typing import Callable, List

from .exceptions import RemoteError, RemoteNotFound, PersistenceFailure
from .codec import dumps, loads

DEF_MAX_RETRIES = 3
DEF_RETRY_DELAY = 1.0
DEF_VERIFY_DELAY = 0.3
DEF_BACKUP_KEEP = 5

BACKUP_SIBLING = "sibling"
BACKUP_ROTATE = "rotate"

def sibling_backup_path(path: str) -> str:
    """
    return the path of the single backup for the document at the given path
    (e.g. ``a/accounts.json`` becomes ``a/accounts.backup.json``)
    """
    if path.endswith(".json"):
        return path[:-len(".json")] + ".backup.json"
    return path + ".backup"

def rotating_backup_prefix(path: str) -> str:
    """
    return the path prefix shared by the rotating backups of the document at the given path
    (e.g. ``a/logs.json`` yields ``a/logs_backup_``)
    """
    if path.endswith(".json"):
        path = path[:-len(".json")]
    return path + "_backup_"

def document_problems(expected, actual, sentinel: Callable=None) -> List[str]:
    """
    compare the structure of a document as written with the structure as read back, returning
    a list of descriptions of the differences found (empty if none).

    :param expected:  the document that was written
    :param actual:    the document that was read back
    :param sentinel:  a function that takes the read-back document and returns a list of problems
                      concerning records required to be present in it (optional)
    """
    if actual is None:
        return ["document could not be read back or parsed"]
    out = []
    if type(expected) != type(actual) and \
       not (isinstance(expected, Mapping) and isinstance(actual, Mapping)):
        out.append("document type changed: %s != %s" % (type(expected).__name__,
                                                         type(actual).__name__))
    elif hasattr(expected, '__len__') and len(expected) != len(actual):
        out.append("entry count mismatch: wrote %d, read %d" % (len(expected), len(actual)))
    if sentinel:
        out.extend(sentinel(actual))
    return out


class DocumentPersister(object):
    """
    a writer of JSON state documents that takes a backup before overwriting, retries failed
    writes, and verifies what was written.

    This class looks for the following configuration parameters:

    ``max_retries``
        _int_ (optional).  the number of times to retry a failed write (default: 3)
    ``retry_delay``
        _float_ (optional).  the delay in seconds before the first retry; it doubles with each
        subsequent retry (default: 1.0)
    ``verify_delay``
        _float_ (optional).  the pause in seconds before reading back a written document
        (default: 0.3).  A negative value turns off verification.
    ``backup_keep``
        _int_ (optional).  the number of rotating backups to retain (default: 5)

    :param RemoteGateway gateway:  the gateway to write through
    :param dict config:  the configuration parameters
    :param Logger  log:  the Logger to use for messages
    :param sleep:        the function to call to pause (for testing)
    """

    def __init__(self, gateway, config: Mapping=None, log: logging.Logger=None, sleep=time.sleep):
        if not config:
            config = {}
        if not log:
            log = logging.getLogger("lyreteams.store.persist")
        self.gw = gateway
        self.cfg = config
        self.log = log
        self._sleep = sleep

        self.max_retries = int(config.get('max_retries', DEF_MAX_RETRIES))
        self.retry_delay = float(config.get('retry_delay', DEF_RETRY_DELAY))
        self.verify_delay = float(config.get('verify_delay', DEF_VERIFY_DELAY))
        self.backup_keep = int(config.get('backup_keep', DEF_BACKUP_KEEP))

    def persist(self, document, path: str, backup: str=BACKUP_SIBLING, sentinel: Callable=None):
        """
        write the given JSON document to the remote store at the given path.

        :param document:    the JSON-serializable document to write
        :param str path:    the remote path to write to
        :param str backup:  the backup style to use:  ``BACKUP_SIBLING`` (the default),
                            ``BACKUP_ROTATE``, or None for no backup
        :param sentinel:    a function for checking the read-back document for required records;
                            see :py:func:`document_problems`.
        :raises PersistenceFailure:  if the document could not be written after all retries
        """
        if backup:
            self.backup(path, backup == BACKUP_ROTATE)

        data = dumps(document)
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                self.gw.write(path, data)
                break
            except RemoteError as ex:
                if attempt + 1 >= attempts:
                    self.log.error("%s: giving up writing document after %d attempts: %s",
                                   path, attempts, str(ex))
                    raise PersistenceFailure(path, attempts, cause=ex) from ex
                delay = self.retry_delay * (2 ** attempt)
                self.log.warning("%s: write failed (%s); retrying in %.1f s (%d/%d)",
                                 path, str(ex), delay, attempt + 1, self.max_retries)
                self._sleep(delay)

        if self.verify_delay >= 0:
            self.verify(document, path, sentinel)

    def verify(self, document, path: str, sentinel: Callable=None) -> List[str]:
        """
        read back a document that was just written and compare it with what was written.
        Problems are logged as warnings (and returned); they are never raised.
        """
        if self.verify_delay > 0:
            self._sleep(self.verify_delay)
        try:
            actual = loads(self.gw.read_bytes(path), path, self.log)
        except RemoteError as ex:
            problems = ["read-back failed: "+str(ex)]
        else:
            problems = document_problems(document, actual, sentinel)
        for prob in problems:
            self.log.warning("%s: verification: %s", path, prob)
        return problems

    def backup(self, path: str, rotate: bool=False) -> str:
        """
        copy the document at the given path to a backup, if the document exists and can be
        parsed; a damaged document (e.g. one left truncated by an interrupted write) is never
        copied over an existing backup.  If ``rotate`` is True, the backup gets a timestamped name
        and older rotating backups beyond the number to retain are deleted.  Failures are logged
        and None is returned.

        :return:  the path to the backup created, or None if no backup was made
        """
        if rotate:
            dest = "%s%d.json" % (rotating_backup_prefix(path), int(time.time() * 1000))
        else:
            dest = sibling_backup_path(path)

        try:
            current = loads(self.gw.read_bytes(path), path, self.log)
            if current is None:
                self.log.warning("%s: current document is unreadable; keeping existing backup",
                                 path)
                return None
            self.gw.copy(path, dest)
        except RemoteNotFound:
            return None
        except RemoteError as ex:
            self.log.warning("%s: failed to create backup (continuing): %s", path, str(ex))
            return None

        if rotate:
            self.prune_backups(path)
        return dest

    def _rotating_backups(self, path: str):
        # (stamp, path) for each rotating backup, newest first
        prefix = rotating_backup_prefix(path)
        folder, _, stem = prefix.rpartition('/')
        pat = re.compile(r'^' + re.escape(stem) + r'(\d+)\.json$')

        backups = []
        for item in self.gw.list(folder):
            m = pat.match(item['name'])
            if m:
                backups.append((int(m.group(1)),
                                "/".join([folder, item['name']]) if folder else item['name']))
        backups.sort(reverse=True)
        return backups

    def prune_backups(self, path: str) -> List[str]:
        """
        delete the oldest rotating backups of the document at the given path so that only the
        configured number remain.  Failures are logged.

        :return:  the paths of the backups deleted
        """
        try:
            backups = self._rotating_backups(path)
        except RemoteError as ex:
            self.log.warning("%s: unable to list backups for pruning: %s", path, str(ex))
            return []

        out = []
        for stamp, bpath in backups[self.backup_keep:]:
            try:
                self.gw.delete(bpath)
                out.append(bpath)
            except RemoteError as ex:
                self.log.warning("%s: failed to delete old backup: %s", bpath, str(ex))
        return out

    def restore_from_backup(self, path: str, rotate: bool=False):
        """
        return the parsed content of the most recent backup of the document at the given path,
        or None if no readable backup exists.
        """
        if rotate:
            try:
                candidates = [b[1] for b in self._rotating_backups(path)]
            except RemoteError as ex:
                self.log.warning("%s: unable to list backups: %s", path, str(ex))
                return None
        else:
            candidates = [sibling_backup_path(path)]

        for bpath in candidates:
            try:
                doc = loads(self.gw.read_bytes(bpath), bpath, self.log)
            except RemoteNotFound:
                continue
            except RemoteError as ex:
                self.log.warning("%s: unable to read backup: %s", bpath, str(ex))
                continue
            if doc is not None:
                return doc
        return None


class BackgroundWriter(object):
    """
    a single worker thread that executes persistence jobs in the order they are submitted.  A job
    that fails has its exception logged; it does not stop the worker.

    :param str   name:  a name for the worker thread
    :param Logger log:  the Logger to record failures to
    """

    def __init__(self, name: str="persister", log: logging.Logger=None):
        if not log:
            log = logging.getLogger("lyreteams.store.persist")
        self.log = log
        self.name = name
        self._queue = queue.Queue()
        self._thread = None
        self._lock = threading.Lock()

    def _ensure_running(self):
        with self._lock:
            if not self._thread or not self._thread.is_alive():
                self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
                self._thread.start()

    def _run(self):
        while True:
            job = self._queue.get()
            try:
                if job is None:
                    return
                func, args, what = job
                func(*args)
            except Exception as ex:
                self.log.error("Background job failed (%s): %s", what, str(ex))
            finally:
                self._queue.task_done()

    def submit(self, func: Callable, *args, what: str=None):
        """
        schedule a function to be called with the given arguments on the worker thread

        :param str what:  a description of the job for use in log messages
        """
        self._queue.put((func, args, what or getattr(func, '__name__', 'job')))
        self._ensure_running()

    def flush(self, timeout: float=None) -> bool:
        """
        wait until all submitted jobs have completed.

        :param float timeout:  the maximum number of seconds to wait; None waits indefinitely
        :return:  True if all jobs completed, False if the timeout was reached first
        """
        if timeout is None:
            self._queue.join()
            return True

        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def close(self, timeout: float=None):
        """
        finish the submitted jobs and stop the worker thread
        """
        with self._lock:
            thread = self._thread
        if thread and thread.is_alive():
            self._queue.put(None)
            thread.join(timeout)
