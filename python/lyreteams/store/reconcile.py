"""
Reconciliation of the in-memory file catalog with the contents of the remote store.

A remote listing is the only evidence of which files actually exist, but it carries little
metadata.  The :py:class:`Reconciler` combines a listing of the remote file folder with the cached
metadata (see :py:meth:`~lyreteams.store.codec.MetadataCodec.load_cached_metadata`) and the
current catalog to compute a new catalog:

  * an object already represented by an active entry keeps that entry unchanged;
  * an object with no active entry gets a new entry, described by the listing and the cached
    metadata;
  * an active entry whose object is missing from the listing is soft-deleted;
  * soft-deleted entries are retained as history.

The reconciler only *computes* the new catalog; committing it is up to the caller (the catalog
service).  A failed listing raises :py:class:`~lyreteams.store.exceptions.RemoteUnavailable` so
that the caller keeps its current state.

:py:class:`ReconcileJob` runs a reconciliation pass on a background thread.
"""
import logging, re, threading
from collections import OrderedDict
from collections.abc import Mapping
from typing import Callable, List, Iterable

from .exceptions import RemoteError, RemoteUnavailable
from .records import (CatalogEntry, UNKNOWN_UPLOADER, DELETED_BY_SCAN,
                      now_iso, to_iso, parse_timestamp)
from .codec import StoreLayout, MetadataCodec, content_type_for
from ..utils.logging import blab

basic_skip_patterns = (re.compile(r"^\."), re.compile(r"^#"))

class ReconcileReport(object):
    """
    a summary of the changes computed by a reconciliation pass

    :ivar list added:     the entries created for newly discovered objects
    :ivar list retired:   the entries soft-deleted because their objects vanished
    :ivar int  kept:      the number of active entries found still present
    :ivar list leftovers: the storage keys of abandoned objects that could not be removed earlier
    :ivar int  superseded:  the number of listing items ignored because a later item had the
                          same storage key
    """
    def __init__(self):
        self.added = []
        self.retired = []
        self.kept = 0
        self.leftovers = []
        self.superseded = 0

    @property
    def changed(self) -> bool:
        """
        True if the pass changed the catalog
        """
        return bool(self.added or self.retired)

    def to_dict(self) -> Mapping:
        return OrderedDict([
            ("added", [e.storage_key for e in self.added]),
            ("retired", [e.storage_key for e in self.retired]),
            ("kept", self.kept),
            ("leftovers", list(self.leftovers)),
            ("superseded", self.superseded)
        ])

    def __str__(self):
        return "%d added, %d retired, %d kept" % (len(self.added), len(self.retired), self.kept)


class Reconciler(object):
    """
    the engine that derives a file catalog from a remote listing plus cached metadata.

    :param RemoteGateway gateway:  the gateway to the remote store
    :param StoreLayout    layout:  the names of the catalog's folders and documents
    :param Logger            log:  the Logger to use for messages
    """

    def __init__(self, gateway, layout: StoreLayout, log: logging.Logger=None):
        if not log:
            log = logging.getLogger("lyreteams.store.reconcile")
        self.gw = gateway
        self.layout = layout
        self.log = log
        self.codec = MetadataCodec(gateway, layout, log.getChild("codec"))
        self._reserved = layout.reserved_names

    def is_user_file(self, item: Mapping) -> bool:
        """
        return True if the given listing item represents a user file (as opposed to a folder,
        a hidden file, or a metadata document)
        """
        if item.get('kind') != 'file':
            return False
        name = item.get('name', '')
        if not name or name in self._reserved or name.endswith(".backup.json"):
            return False
        return not any(p.search(name) for p in basic_skip_patterns)

    def scan(self):
        """
        list the remote file folder and load the cached metadata.

        :return:  a 2-tuple containing the list of user-file listing items and the cached
                  metadata (a dictionary keyed by storage key)
        :raises RemoteUnavailable:  if the file folder could not be listed
        """
        try:
            listing = self.gw.list(self.layout.files_folder)
        except RemoteError as ex:
            self.log.warning("Unable to list remote file folder, %s: %s", self.layout.files_folder,
                             str(ex))
            raise RemoteUnavailable("Unable to list remote files: "+str(ex), ex) from ex

        files = []
        for item in listing:
            if self.is_user_file(item):
                files.append(item)
            else:
                blab(self.log, "skipping non-file listing item: %s", item.get('name'))

        return files, self.codec.load_cached_metadata()

    def merge(self, current: Mapping, listing: Iterable[Mapping], cached: Mapping,
              allocate_id: Callable, protected: Iterable=(), orphans: Mapping=None):
        """
        compute a new catalog from the current one, a remote listing, and cached metadata.  The
        inputs are not changed.

        :param dict   current:  the current catalog, mapping identifiers to CatalogEntry instances
        :param list   listing:  the user-file items from the remote listing
        :param dict    cached:  the cached metadata, keyed by storage key
        :param allocate_id:     a function that returns a new, unused entry identifier each time
                                it is called
        :param protected:       identifiers of entries that must not be retired in this pass
                                (e.g. because they were created after the listing was taken)
        :param orphans:         storage keys of objects whose removal failed (e.g. after a delete
                                or a rename), each mapped to a record of the abandoned object
                                (its ``size``, its listed ``modified`` time if known, and the
                                ``abandoned`` time); a listed object matching its record exactly
                                is reported as a leftover rather than restored
        :return:  a 2-tuple containing the new catalog (a dictionary mapping identifiers to
                  CatalogEntry instances) and a :py:class:`ReconcileReport`
        """
        report = ReconcileReport()
        protected = set(protected)

        found = OrderedDict()
        for item in listing:
            key = item['name']
            if key in found:
                self.log.warning("%s: duplicate storage key in listing; using the later item", key)
                report.superseded += 1
                del found[key]
            found[key] = item

        active = OrderedDict()
        for entry in current.values():
            if not entry.deleted:
                active[entry.storage_key] = entry
        orphans = orphans or {}

        out = OrderedDict(current)
        for key, item in found.items():
            if key in active:
                report.kept += 1
                continue
            if key in orphans and self.is_leftover(item, orphans[key]):
                self.log.info("%s: object remains for a deleted entry; not restoring it", key)
                report.leftovers.append(key)
                continue

            entry = self._new_entry(allocate_id(), key, item, cached.get(key, {}))
            blab(self.log, "discovered new file: %s (id=%s)", key, entry.id)
            out[entry.id] = entry
            report.added.append(entry)

        when = now_iso()
        for key, entry in active.items():
            if key in found:
                continue
            if entry.id in protected:
                blab(self.log, "%s: not retiring recently changed entry", key)
                continue
            self.log.info("%s: file no longer found in remote store; marking deleted", key)
            out[entry.id] = entry.soft_deleted(DELETED_BY_SCAN, when)
            report.retired.append(out[entry.id])

        return out, report

    def is_leftover(self, item: Mapping, orphan: Mapping) -> bool:
        """
        return True if the given listing item is the very object described by an orphan record.
        The size must match, and so must the modification time when the record carries one;
        without one, the object must not have been modified after it was abandoned.
        """
        if item.get('size') != orphan.get('size'):
            return False
        modified = parse_timestamp(item.get('modified'))
        if orphan.get('modified'):
            return modified is not None and modified == parse_timestamp(orphan['modified'])
        abandoned = parse_timestamp(orphan.get('abandoned'))
        return modified is not None and abandoned is not None and modified <= abandoned

    def _new_entry(self, ident, key: str, item: Mapping, meta: Mapping) -> CatalogEntry:
        return CatalogEntry({
            'id': ident,
            'filename': key,
            'originalFilename': meta.get('originalFilename') or key,
            'size': item.get('size') or 0,
            'mimeType': content_type_for(key),
            'path': self.layout.file_path(key),
            'uploadedAt': meta.get('uploadedAt') or to_iso(item.get('modified')) or now_iso(),
            'uploadedBy': meta.get('uploadedBy') or UNKNOWN_UPLOADER
        })


class ReconcileJob(object):
    """
    a reconciliation pass running on a background thread.  The work is carried out by a function
    that takes this job as its argument (so that it can check :py:attr:`cancelled` before
    committing) and returns a :py:class:`ReconcileReport`.

    :param target:      the function that does the work
    :param Logger log:  the Logger to record failures to
    """

    def __init__(self, target: Callable, log: logging.Logger=None):
        if not log:
            log = logging.getLogger("lyreteams.store.reconcile")
        self.log = log
        self._target = target
        self._done = threading.Event()
        self._cancelled = False
        self.report = None
        self.error = None
        self._thread = threading.Thread(target=self._run, name="reconcile", daemon=True)

    def start(self):
        self._thread.start()
        return self

    def _run(self):
        try:
            self.report = self._target(self)
        except RemoteUnavailable as ex:
            self.error = ex
        except Exception as ex:
            self.log.exception("Unexpected failure during reconciliation: %s", str(ex))
            self.error = ex
        finally:
            self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        """
        request that the results of this pass be discarded rather than committed.  This has no
        effect if the pass has already committed.
        """
        self._cancelled = True

    def wait(self, timeout: float=None) -> ReconcileReport:
        """
        wait for the pass to complete and return its report.  None is returned if the pass was
        cancelled.

        :raises RemoteUnavailable:  if the pass failed or did not complete within the timeout
        """
        if not self._done.wait(timeout):
            raise RemoteUnavailable("Reconciliation did not complete within %s seconds" % timeout)
        if self.error:
            if isinstance(self.error, RemoteUnavailable):
                raise self.error
            raise RemoteUnavailable("Reconciliation failed: "+str(self.error), self.error)
        return self.report
