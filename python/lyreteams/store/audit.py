"""
Audit events and the audit log.

The catalog service emits an :py:class:`AuditEvent` after every successful mutation to each of its
registered listeners.  :py:class:`AuditLog` is a listener that keeps the events in a JSON document
(``logs/logs.json``) in the remote store, taking a rotating, timestamped backup before each save.
"""
import logging, secrets, threading
from collections import OrderedDict
from collections.abc import Mapping
from typing import List

from .exceptions import RemoteError
from .persist import DocumentPersister, BackgroundWriter, BACKUP_ROTATE, rotating_backup_prefix
from .codec import StoreLayout, loads
from .records import now_iso

USER_REGISTER = "USER_REGISTER"
USER_LOGIN = "USER_LOGIN"
USER_LOGOUT = "USER_LOGOUT"
USER_DELETE = "USER_DELETE"
USER_ADMIN = "USER_ADMIN"
USER_ADMIN_REMOVE = "USER_ADMIN_REMOVE"
USER_APPROVE = "USER_APPROVE"
USER_REJECT = "USER_REJECT"
FILE_UPLOAD = "FILE_UPLOAD"
FILE_DELETE = "FILE_DELETE"
FILE_RENAME = "FILE_RENAME"
FILE_DOWNLOAD = "FILE_DOWNLOAD"
SYSTEM = "SYSTEM"
EVENT_KINDS = (USER_REGISTER, USER_LOGIN, USER_LOGOUT, USER_DELETE, USER_ADMIN, USER_ADMIN_REMOVE,
               USER_APPROVE, USER_REJECT, FILE_UPLOAD, FILE_DELETE, FILE_RENAME, FILE_DOWNLOAD, SYSTEM)

SYSTEM_ACTOR = "system"

class AuditEvent(object):
    """
    a record of a change made to the catalog

    :param str kind:     the type of event; one of :py:data:`EVENT_KINDS`
    :param str message:  a human-readable description of the event
    :param str actor:    the name of the user who caused the event (or "system")
    :param dict details: additional data describing the event
    """
    def __init__(self, kind: str, message: str, actor: str=None, details: Mapping=None,
                 timestamp: str=None, ident: str=None):
        if kind not in EVENT_KINDS:
            raise ValueError("AuditEvent: unrecognized event kind: "+str(kind))
        self.kind = kind
        self.message = message
        self.actor = actor or SYSTEM_ACTOR
        self.details = OrderedDict(details or {})
        self.timestamp = timestamp or now_iso()
        self.id = ident or secrets.token_urlsafe(6)

    def to_dict(self) -> Mapping:
        """
        return the event in the form stored in the audit log document
        """
        return OrderedDict([
            ("id",        self.id),
            ("type",      self.kind),
            ("timestamp", self.timestamp),
            ("message",   self.message),
            ("username",  self.actor),
            ("details",   dict(self.details))
        ])

    @classmethod
    def from_dict(cls, data: Mapping):
        """
        recreate an event from its stored form

        :raises ValueError:  if the data does not describe a valid event
        """
        if not isinstance(data, Mapping):
            raise ValueError("AuditEvent: stored form is not an object")
        return cls(data.get('type'), data.get('message', ""), data.get('username'),
                   data.get('details') if isinstance(data.get('details'), Mapping) else None,
                   data.get('timestamp'), data.get('id'))

    def __repr__(self):
        return "AuditEvent(%s: %s)" % (self.kind, self.message)


class AuditLog(object):
    """
    a listener for :py:class:`AuditEvent` instances that saves them to the remote store.  Saves
    are done on a background thread; a failure to save is logged and the events are retained in
    memory for the next save.

    This class looks for the following configuration parameters:

    ``max_entries``
        _int_ (optional).  the maximum number of entries to retain, oldest dropped first; 0 (the
        default) means no limit.

    :param DocumentPersister persister:  the persister to save the log through
    :param StoreLayout          layout:  the names of the catalog's documents
    :param dict                 config:  the ``audit`` configuration
    :param BackgroundWriter     writer:  the worker to do saves on; one is created if not provided
    :param Logger                  log:  the Logger to use for messages
    """

    def __init__(self, persister: DocumentPersister, layout: StoreLayout, config: Mapping=None,
                 writer: BackgroundWriter=None, log: logging.Logger=None):
        if not config:
            config = {}
        if not log:
            log = logging.getLogger("lyreteams.store.audit")
        self.log = log
        self.cfg = config
        self.persister = persister
        self.gw = persister.gw
        self.path = layout.audit_path
        self.max_entries = int(config.get('max_entries', 0))
        self._writer = writer or BackgroundWriter("audit", log)
        self._entries = []
        self._lock = threading.Lock()

    def load(self):
        """
        load the previously saved events.  If the saved document is corrupted, it is moved aside
        and the log starts from the most recent rotating backup (or empty, if there is none).
        """
        try:
            data = self.gw.read_bytes(self.path) if self.gw.exists(self.path) else None
        except RemoteError as ex:
            self.log.warning("Unable to read audit log (starting empty): %s", str(ex))
            return

        doc = loads(data, self.path, self.log, None) if data is not None else []
        if doc is not None and not isinstance(doc, list):
            doc = None
        if doc is None:
            self.log.warning("%s: audit log is corrupted; moving it aside and starting a new one",
                             self.path)
            backup = "%scorrupted_%s.json" % (rotating_backup_prefix(self.path),
                                              now_iso().replace(':', '-'))
            try:
                self.gw.move(self.path, backup)
            except RemoteError as ex:
                self.log.warning("%s: failed to move aside corrupted audit log: %s", self.path,
                                 str(ex))
            doc = self.persister.restore_from_backup(self.path, rotate=True)
            if isinstance(doc, list):
                self.log.warning("%s: recovered %d entries from latest backup", self.path, len(doc))
            else:
                doc = []

        entries = []
        for item in doc:
            try:
                entries.append(AuditEvent.from_dict(item))
            except ValueError as ex:
                self.log.warning("Skipping unreadable audit log entry: %s", str(ex))
        with self._lock:
            self._entries = entries + self._entries
            self._trim()

    def _trim(self):
        if self.max_entries and len(self._entries) > self.max_entries:
            self._entries = self._entries[-self.max_entries:]

    def __call__(self, event: AuditEvent):
        self.record(event)

    def record(self, event: AuditEvent):
        """
        add an event to the log and schedule a save
        """
        with self._lock:
            self._entries.append(event)
            self._trim()
        self._writer.submit(self.save, what="save audit log")

    def save(self):
        """
        write the current events to the remote store (blocking)

        :raises PersistenceFailure:  if the log could not be written
        """
        with self._lock:
            doc = [e.to_dict() for e in self._entries]
        self.persister.persist(doc, self.path, BACKUP_ROTATE)

    def flush(self, timeout: float=None) -> bool:
        """
        wait for scheduled saves to complete
        """
        return self._writer.flush(timeout)

    def get_logs(self, limit: int=None, offset: int=0, kinds=None) -> List[Mapping]:
        """
        return the logged events in their stored form, most recent first.

        :param int  limit:   the maximum number of events to return (None for all)
        :param int  offset:  the number of (matching) events to skip
        :param kinds:        if provided, only events of these kinds are returned
        """
        with self._lock:
            entries = list(self._entries)
        entries.reverse()
        if kinds:
            entries = [e for e in entries if e.kind in kinds]
        entries = entries[offset:]
        if limit is not None:
            entries = entries[:limit]
        return [e.to_dict() for e in entries]
