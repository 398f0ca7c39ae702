"""
The catalog service:  the public interface to the files and user accounts of a LyreTeams
deployment, consumed by the web route layer.

The service keeps the authoritative, in-memory catalog of files and accounts and keeps it
synchronized with the remote store (see :py:mod:`~lyreteams.store.gateway`):

  *  on start-up, it loads (and repairs) the account list and derives the file catalog from a
     listing of the remote store (see :py:mod:`~lyreteams.store.reconcile`);
  *  file mutations update the in-memory catalog and then save the catalog and sidecar documents
     in the background;
  *  account mutations are saved (blocking) before they take effect in memory;
  *  every successful mutation is reported as an :py:class:`~lyreteams.store.audit.AuditEvent` to
     the registered listeners.

Mutations are serialized (one file mutation and one account mutation at a time), while queries
read a snapshot of the current state without waiting on any lock:  each mutation builds a new
map and swaps it in.
"""
import logging, threading, time
from collections import OrderedDict
from collections.abc import Mapping
from copy import deepcopy
from logging import Logger
from typing import List, Callable

from ..base.config import DEF_BASE_FOLDER
from .exceptions import *
from .gateway import RemoteGateway, create_gateway
from .codec import (StoreLayout, encode_catalog, encode_sidecar, encode_accounts, decode_accounts,
                    content_type_for, dumps)
from .records import (CatalogEntry, Account, UNKNOWN_UPLOADER, DELETED_BY_REQUEST, ROLE_USER,
                      ROLE_ADMIN, STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED, now_iso,
                      unique_storage_key, merge_account_update)
from .persist import DocumentPersister, BackgroundWriter, BACKUP_SIBLING
from .guardian import AccountGuardian
from .reconcile import Reconciler, ReconcileJob, ReconcileReport
from . import audit as aud

class MutationResult(object):
    """
    the outcome of a file mutation that may only partially succeed.  A partially successful
    mutation has taken effect in the catalog, but some remote operation supporting it failed.

    :ivar CatalogEntry entry:  the updated entry (None for bulk operations)
    :ivar list      entries:  the entries affected by a bulk operation
    :ivar list     warnings:  descriptions of the remote operations that failed
    """
    def __init__(self, entry: CatalogEntry=None, warnings: List[str]=None,
                 entries: List[CatalogEntry]=None):
        self.entry = entry
        self.entries = entries or []
        self.warnings = warnings or []

    @property
    def partial(self) -> bool:
        """
        True if the mutation only partially succeeded
        """
        return bool(self.warnings)

    def to_dict(self) -> Mapping:
        out = OrderedDict([("success", True), ("partialSuccess", self.partial)])
        if self.entry:
            out['file'] = self.entry.to_dict()
        if self.entries:
            out['count'] = len(self.entries)
        if self.warnings:
            out['warnings'] = list(self.warnings)
        return out


class CatalogService(object):
    """
    a service for managing the file catalog and user accounts of a LyreTeams deployment.

    This class supports the following configuration parameters:

    ``storage``
        (dict) _required_.  the configuration of the remote store.  Its ``base_folder``
        sub-parameter (default: "LyreTeams") gives the folder holding the catalog; the other
        sub-parameters configure the gateway (see :py:func:`~lyreteams.store.gateway.create_gateway`).
    ``persistence``
        (dict) _optional_.  the retry, verification, and backup parameters for saving documents
        (see :py:class:`~lyreteams.store.persist.DocumentPersister`).
    ``accounts``
        (dict) _optional_.  the primordial administrator parameters (see
        :py:class:`~lyreteams.store.guardian.AccountGuardian`).
    ``audit``
        (dict) _optional_.  the audit log parameters.  Set ``enabled`` to False to not keep an
        audit log in the remote store (see :py:class:`~lyreteams.store.audit.AuditLog`).
    ``reconcile``
        (dict) _optional_.  set ``on_startup`` to False to skip reconciliation in :py:meth:`start`.

    :param dict   config:  the service configuration
    :param RemoteGateway gateway:  the gateway to the remote store; if not provided, one is created
                           from the ``storage`` configuration
    :param Logger    log:  the Logger to use for messages
    :param sleep:          the function used for pausing between persistence retries
    """

    def __init__(self, config: Mapping, gateway: RemoteGateway=None, log: Logger=None,
                 sleep: Callable=time.sleep):
        if not log:
            log = logging.getLogger("lyreteams.catalog")
        self.log = log
        self.cfg = deepcopy(config)

        storecfg = self.cfg.get('storage', {})
        if gateway is None:
            gateway = create_gateway(storecfg, log.getChild("gateway"))
        self.gw = gateway
        self.layout = StoreLayout(storecfg.get('base_folder', DEF_BASE_FOLDER))

        self.persister = DocumentPersister(gateway, self.cfg.get('persistence', {}),
                                           log.getChild("persist"), sleep)
        self.guardian = AccountGuardian(self.cfg.get('accounts', {}), log.getChild("guardian"))
        self.reconciler = Reconciler(gateway, self.layout, log.getChild("reconcile"))
        self.codec = self.reconciler.codec
        self._writer = BackgroundWriter("catalog-writer", log.getChild("writer"))

        self._listeners = []
        self.audit = None
        auditcfg = self.cfg.get('audit', {})
        if auditcfg.get('enabled', True):
            self.audit = aud.AuditLog(self.persister, self.layout, auditcfg, self._writer,
                                      log.getChild("audit"))
            self.add_listener(self.audit)

        self._files = OrderedDict()
        self._accounts = OrderedDict()
        self._next_file_id = 1
        self._next_account_id = 1
        self._accounts_loaded = False
        self._files_lock = threading.RLock()
        self._accounts_lock = threading.RLock()
        self._scanning = False
        self._changed_during_scan = set()
        self._orphaned_during_scan = set()
        self._orphans = {}
        self._scan_guard = threading.Lock()
        self._scan_job = None

    ## Life-cycle

    def start(self, reconcile: bool=None):
        """
        prepare the service for use:  ensure that the remote folders exist, load the accounts and
        the audit log, and (unless turned off) reconcile the file catalog with the remote store.
        Remote failures are logged; the service starts with whatever state could be loaded.
        """
        self._ensure_folders()
        self.load_accounts()
        if self.audit:
            self.audit.load()

        if reconcile is None:
            reconcile = self.cfg.get('reconcile', {}).get('on_startup', True)
        if reconcile:
            try:
                report = self.reconcile()
                self.log.info("Initial reconciliation: %s", str(report))
            except RemoteUnavailable as ex:
                self.log.error("Initial reconciliation failed; file catalog is empty: %s", str(ex))

    def _ensure_folders(self):
        for folder in self.layout.folders:
            try:
                self.gw.ensure_directory(folder)
            except RemoteError as ex:
                self.log.warning("%s: unable to ensure folder exists: %s", folder, str(ex))

    def flush(self, timeout: float=None) -> bool:
        """
        wait for background saves to complete

        :return:  False if the timeout was reached before they completed
        """
        return self._writer.flush(timeout)

    def shutdown(self, timeout: float=None):
        """
        cancel any in-flight reconciliation and finish pending background saves
        """
        with self._scan_guard:
            job = self._scan_job
        if job and not job.done:
            job.cancel()
        self._writer.close(timeout)

    ## Events

    def add_listener(self, listener: Callable):
        """
        register a function to be called with each :py:class:`~lyreteams.store.audit.AuditEvent`
        emitted by this service
        """
        self._listeners.append(listener)

    def record_event(self, kind: str, message: str, actor: str=None, details: Mapping=None):
        """
        emit an audit event to the registered listeners.  This is used internally after each
        mutation; the route layer may use it to report events the catalog does not see (e.g.
        ``USER_LOGIN`` or ``FILE_DOWNLOAD``).
        """
        event = aud.AuditEvent(kind, message, actor, details)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as ex:
                self.log.warning("Audit listener failed to accept %s event: %s", kind, str(ex))

    def get_logs(self, limit: int=None, offset: int=0, kinds=None) -> List[Mapping]:
        """
        return the recorded audit events, most recent first (see
        :py:meth:`~lyreteams.store.audit.AuditLog.get_logs`)
        """
        if not self.audit:
            return []
        return self.audit.get_logs(limit, offset, kinds)

    ## Files

    def list_files(self) -> List[CatalogEntry]:
        """
        return the active (not deleted) entries in the catalog
        """
        return [e for e in self._files.values() if not e.deleted]

    def get_file(self, ident) -> CatalogEntry:
        """
        return the active catalog entry with the given identifier

        :raises ObjectNotFound:  if no such entry exists or it has been deleted
        """
        entry = self._files.get(ident)
        if entry is None or entry.deleted:
            raise ObjectNotFound("file", ident)
        return entry

    def get_file_by_storage_key(self, key: str) -> CatalogEntry:
        """
        return the active catalog entry with the given storage key

        :raises ObjectNotFound:  if no such entry exists
        """
        for entry in self._files.values():
            if entry.storage_key == key and not entry.deleted:
                return entry
        raise ObjectNotFound("file", key)

    def open_file(self, ident):
        """
        return a readable binary stream for the contents of the file with the given identifier

        :raises ObjectNotFound:     if no such entry exists or its contents are missing
        :raises RemoteUnavailable:  if the contents could not be retrieved
        """
        entry = self.get_file(ident)
        try:
            return self.gw.read(entry.remote_path)
        except RemoteNotFound as ex:
            raise ObjectNotFound("file", ident, "Contents of file %s are missing from the store" %
                                 entry.storage_key) from ex
        except RemoteError as ex:
            raise RemoteUnavailable(cause=ex) from ex

    def _allocate_file_id(self):
        # must be called with _files_lock held
        out = self._next_file_id
        self._next_file_id += 1
        return out

    def _active_keys(self, exclude=None):
        return set(e.storage_key for e in self._files.values()
                   if not e.deleted and e.id != exclude)

    def _commit_entry(self, entry: CatalogEntry):
        # must be called with _files_lock held
        files = OrderedDict(self._files)
        files[entry.id] = entry
        self._files = files
        if self._scanning:
            self._changed_during_scan.add(entry.id)

    def create_file(self, upload: Mapping, content=None, actor: str=None) -> CatalogEntry:
        """
        add a newly uploaded file to the catalog.  The file is stored under a storage key derived
        from its name; if that key is in use, a numeric suffix is added.

        :param dict upload:  a description of the upload with the following properties:
                             ``name`` (required):  the original file name;
                             ``size``:  the size in bytes (required unless ``content`` is bytes);
                             ``type``:  the content type (default:  inferred from the name);
                             ``path``:  the local path to the uploaded bytes (used if ``content``
                             is not provided).
        :param content:      the file's bytes, either as bytes or a readable binary stream.  If
                             neither this nor ``upload['path']`` is given, the bytes are assumed
                             to be stored by the caller under the returned entry's remote path.
        :param str actor:    the name of the uploading user
        :raises ValidationError:    if the upload description is incomplete or illegal
        :raises RemoteUnavailable:  if the bytes could not be written to the remote store
        """
        if not isinstance(upload, Mapping):
            raise ValidationError("Upload description must be a dictionary")
        errors = []
        name = upload.get('name')
        if not name or not isinstance(name, str):
            errors.append("name: required")
        size = upload.get('size')
        if size is None and isinstance(content, (bytes, bytearray)):
            size = len(content)
        if size is None:
            errors.append("size: required")
        elif not isinstance(size, int) or isinstance(size, bool) or size < 0:
            errors.append("size: must be a non-negative integer")
        if errors:
            raise ValidationError(errors=errors)
        ctype = upload.get('type') or content_type_for(name)
        uploader = actor or upload.get('uploaded_by') or UNKNOWN_UPLOADER

        with self._files_lock:
            key = unique_storage_key(name, self._active_keys())
            path = self.layout.file_path(key)
            if content is None and upload.get('path'):
                try:
                    with open(upload['path'], 'rb') as fd:
                        self._store_content(path, fd)
                except OSError as ex:
                    raise ValidationError("Unable to read uploaded file: "+str(ex)) from ex
            elif content is not None:
                self._store_content(path, content)

            entry = CatalogEntry({
                'id': self._allocate_file_id(),
                'filename': key,
                'originalFilename': name,
                'size': size,
                'mimeType': ctype,
                'path': path,
                'uploadedAt': now_iso(),
                'uploadedBy': uploader
            })
            self._commit_entry(entry)

        self.log.info("Added file %s (id=%s) to catalog", key, entry.id)
        self._save_catalog_later()
        self._save_sidecar_later(entry)
        self.record_event(aud.FILE_UPLOAD, f"File uploaded: {name}", uploader,
                          {"fileId": entry.id, "filename": key, "size": size})
        return entry

    def _store_content(self, path, content):
        try:
            self.gw.write(path, content)
        except RemoteError as ex:
            self.log.error("%s: failed to store uploaded file: %s", path, str(ex))
            raise RemoteUnavailable("Failed to store uploaded file: "+str(ex), ex) from ex

    def rename_file(self, ident, new_name: str, actor: str=None) -> MutationResult:
        """
        change the display name of a file.  The file's bytes are moved to a storage key derived
        from the new name (by copying and then deleting the original); if that fails, the new
        display name is still recorded and the result is marked as a partial success.  As with
        uploads, a numeric suffix is added to the storage key if another file already uses it;
        the display name is always the one requested.

        :raises ObjectNotFound:   if the file does not exist
        :raises ValidationError:  if the new name is empty
        """
        if not new_name or not isinstance(new_name, str) or not new_name.strip():
            raise ValidationError("New file name must be a non-empty string")
        new_name = new_name.strip()

        warnings = []
        with self._files_lock:
            entry = self.get_file(ident)
            newkey = unique_storage_key(new_name, self._active_keys(exclude=entry.id))

            updated = entry.renamed(new_name)
            if newkey != entry.storage_key:
                newpath = self.layout.file_path(newkey)
                try:
                    self.gw.copy(entry.remote_path, newpath)
                    if not self.gw.exists(newpath):
                        raise RemoteServerError("Copy not found at destination", newpath)
                except RemoteError as ex:
                    self.log.warning("%s: unable to move contents to %s; renaming in catalog only: %s",
                                     entry.storage_key, newkey, str(ex))
                    warnings.append("file contents could not be moved to the new name: "+str(ex))
                else:
                    updated = entry.renamed(new_name, newkey, newpath)
                    try:
                        self.gw.delete(entry.remote_path)
                    except RemoteError as ex:
                        self.log.warning("%s: unable to delete original after rename: %s",
                                         entry.remote_path, str(ex))
                        warnings.append("original copy could not be removed: "+str(ex))
                        self._abandon(entry)

            self._commit_entry(updated)

        self._save_catalog_later()
        self._save_sidecar_later(updated)
        if updated.storage_key != entry.storage_key:
            self._writer.submit(self._delete_quietly, self.layout.sidecar_path(entry.storage_key),
                                what="delete old sidecar")
        self.record_event(aud.FILE_RENAME,
                          f"File renamed from {entry.display_name} to {new_name}", actor,
                          {"fileId": ident, "oldName": entry.display_name, "newName": new_name,
                           "partialSuccess": bool(warnings)})
        return MutationResult(updated, warnings)

    def delete_file(self, ident, actor: str=None) -> MutationResult:
        """
        mark a file as deleted and (best effort) delete its bytes and sidecar from the remote
        store.  Failures of the remote deletes are reported as warnings in the result.

        :raises ObjectNotFound:   if the file does not exist (or is already deleted)
        """
        warnings = []
        with self._files_lock:
            entry = self.get_file(ident)
            deleted = entry.soft_deleted(DELETED_BY_REQUEST)
            self._commit_entry(deleted)
            warnings.extend(self._remove_remote(entry))

        self._save_catalog_later()
        self.record_event(aud.FILE_DELETE, f"File deleted: {entry.display_name}", actor,
                          {"fileId": ident, "filename": entry.storage_key})
        return MutationResult(deleted, warnings)

    def _remove_remote(self, entry: CatalogEntry) -> List[str]:
        warnings = []
        for path in (entry.remote_path, self.layout.sidecar_path(entry.storage_key)):
            try:
                self.gw.delete(path)
            except RemoteError as ex:
                self.log.warning("%s: failed to delete from remote store: %s", path, str(ex))
                warnings.append(f"{path}: could not be deleted: {str(ex)}")
                if path == entry.remote_path:
                    self._abandon(entry)
        return warnings

    def _abandon(self, entry: CatalogEntry):
        # must be called with _files_lock held
        orphan = {'size': entry.size, 'modified': None, 'abandoned': now_iso()}
        try:
            for item in self.gw.list(self.layout.files_folder):
                if item.get('name') == entry.storage_key:
                    orphan['size'] = item.get('size')
                    orphan['modified'] = item.get('modified')
                    break
            else:
                return
        except RemoteError as ex:
            self.log.debug("%s: unable to describe abandoned object: %s",
                           entry.storage_key, str(ex))

        self._orphans[entry.storage_key] = orphan
        if self._scanning:
            self._orphaned_during_scan.add(entry.storage_key)

    def purge_all(self, actor: str=None) -> MutationResult:
        """
        delete all files:  every active entry is marked deleted, its bytes and sidecar are
        deleted from the remote store (best effort), and the bulk catalog document is emptied.
        """
        warnings = []
        with self._files_lock:
            when = now_iso()
            active = self.list_files()
            files = OrderedDict(self._files)
            for entry in active:
                files[entry.id] = entry.soft_deleted(DELETED_BY_REQUEST, when)
            self._files = files

            for entry in active:
                warnings.extend(self._remove_remote(entry))
            try:
                for item in self.gw.list(self.layout.metadata_folder):
                    if item.get('kind') == 'file' and item['name'].endswith(".json"):
                        self.gw.delete(self.layout.metadata_folder + "/" + item['name'])
            except RemoteNotFound:
                pass
            except RemoteError as ex:
                self.log.warning("Failed to clear metadata folder: %s", str(ex))
                warnings.append("metadata folder could not be cleared: "+str(ex))

        self._save_catalog_later()
        self.log.info("Purged %d files from catalog", len(active))
        self.record_event(aud.FILE_DELETE, f"All files purged ({len(active)} files)", actor,
                          {"count": len(active), "purge": True})
        return MutationResult(None, warnings, [files[e.id] for e in active])

    def save_catalog(self):
        """
        write the bulk catalog document (blocking)

        :raises PersistenceFailure:  if the document could not be written
        """
        self.persister.persist(encode_catalog(list(self._files.values())),
                               self.layout.catalog_path, BACKUP_SIBLING)

    def _save_catalog_later(self):
        self._writer.submit(self.save_catalog, what="save catalog")

    def _write_sidecar(self, entry: CatalogEntry):
        # skip entries deleted or renamed since the save was scheduled
        current = self._files.get(entry.id)
        if current is None or current.deleted or current.storage_key != entry.storage_key:
            return
        self.gw.write(self.layout.sidecar_path(current.storage_key),
                      dumps(encode_sidecar(current)))

    def _save_sidecar_later(self, entry: CatalogEntry):
        self._writer.submit(self._write_sidecar, entry, what="save sidecar for "+entry.storage_key)

    def _delete_quietly(self, path: str):
        try:
            self.gw.delete(path)
        except RemoteError as ex:
            self.log.warning("%s: failed to delete: %s", path, str(ex))

    def _remove_leftover(self, key: str):
        with self._files_lock:
            if key not in self._orphans:
                return
            if key not in self._active_keys():
                self.log.info("%s: removing object left behind by a deleted file", key)
                try:
                    self.gw.delete(self.layout.file_path(key))
                except RemoteError as ex:
                    self.log.warning("%s: failed to delete: %s", key, str(ex))
                    return
            del self._orphans[key]

    ## Reconciliation

    def start_reconcile(self) -> ReconcileJob:
        """
        start a reconciliation pass in the background, or return the one already in progress.
        """
        with self._scan_guard:
            if self._scan_job and not self._scan_job.done:
                return self._scan_job
            with self._files_lock:
                self._scanning = True
                self._changed_during_scan = set()
                self._orphaned_during_scan = set()
            self._scan_job = ReconcileJob(self._reconcile_pass, self.log.getChild("reconcile"))
            return self._scan_job.start()

    def reconcile(self, timeout: float=None) -> ReconcileReport:
        """
        reconcile the file catalog with the contents of the remote store, joining a pass that is
        already in progress.  If the remote store cannot be listed, the catalog is left
        unchanged.

        :param float timeout:  the maximum number of seconds to wait for the pass to complete
        :raises RemoteUnavailable:  if the remote store could not be listed or the pass did not
                                    complete in time
        """
        return self.start_reconcile().wait(timeout)

    def _reconcile_pass(self, job: ReconcileJob) -> ReconcileReport:
        try:
            listing, cached = self.reconciler.scan()

            with self._files_lock:
                if job.cancelled:
                    self.log.info("Reconciliation cancelled; discarding results")
                    return None
                files, report = self.reconciler.merge(self._files, listing, cached,
                                                      self._allocate_file_id,
                                                      self._changed_during_scan, self._orphans)
                self._files = files
                self._prune_orphans(listing, report)
        finally:
            with self._files_lock:
                self._scanning = False
                self._changed_during_scan = set()
                self._orphaned_during_scan = set()

        if report.changed:
            self.log.info("Reconciliation changed the catalog: %s", str(report))
            self._save_catalog_later()
            for entry in report.added:
                self._save_sidecar_later(entry)
            self.record_event(aud.SYSTEM, "Catalog reconciled with remote store: "+str(report),
                              None, report.to_dict())
        for key in report.leftovers:
            self._writer.submit(self._remove_leftover, key, what="remove leftover "+key)
        return report

    def _prune_orphans(self, listing, report: ReconcileReport):
        # must be called with _files_lock held; records made during the scan are kept
        listed = set(item['name'] for item in listing)
        for key in list(self._orphans):
            if key in self._orphaned_during_scan:
                continue
            if key not in listed or key not in report.leftovers:
                del self._orphans[key]

    ## Accounts

    def load_accounts(self) -> bool:
        """
        (re-)load the account list from the remote store, repairing it as necessary (repairs are
        saved immediately).  If the list cannot be read, the current accounts are retained; if
        none have been loaded yet, only the (synthesized) administrator account is available,
        and account mutations are refused until a load succeeds.

        :return:  True if the accounts were loaded
        """
        with self._accounts_lock:
            try:
                raw = self.codec.load_accounts()
            except RemoteError as ex:
                self.log.error("Unable to load accounts: %s", str(ex))
                if not self._accounts_loaded:
                    accounts, _ = self.guardian.verify([])
                    self._set_accounts(accounts)
                return False

            restored = False
            if not raw:
                raw = decode_accounts(self.persister.restore_from_backup(
                                          self.layout.accounts_path), self.log)
                if raw:
                    self.log.warning("Account list missing or unreadable; restored %d accounts "
                                     "from backup", len(raw))
                    restored = True

            accounts, corrections = self.guardian.verify(raw)
            if restored:
                corrections.insert(0, "restored account list from backup")
            if corrections:
                try:
                    # a restored list must not be backed up over by the unreadable one
                    self._persist_accounts(accounts, None if restored else BACKUP_SIBLING)
                except PersistenceFailure as ex:
                    self.log.error("Unable to save repaired accounts: %s", str(ex))
            self._set_accounts(accounts)
            self._accounts_loaded = True

        if corrections:
            self.record_event(aud.SYSTEM, "Account list repaired", None,
                              {"corrections": corrections})
        return True

    def _set_accounts(self, accounts):
        self._accounts = OrderedDict((a.id, a) for a in accounts)
        if accounts:
            self._next_account_id = max(self._next_account_id, max(self._accounts) + 1)

    def _admin_problems(self, doc) -> List[str]:
        for item in doc if isinstance(doc, list) else []:
            if isinstance(item, Mapping) and item.get('username') == self.guardian.admin_username:
                if item.get('role') != ROLE_ADMIN or item.get('status') != STATUS_APPROVED:
                    return ["administrator account lacks admin role or approval"]
                return []
        return ["administrator account is missing"]

    def _persist_accounts(self, accounts, backup: str=BACKUP_SIBLING):
        self.persister.persist(encode_accounts(accounts), self.layout.accounts_path,
                               backup, self._admin_problems)

    def _commit_accounts(self, accounts):
        # must be called with _accounts_lock held
        repaired, _ = self.guardian.verify(accounts)
        self._persist_accounts(repaired)
        self._set_accounts(repaired)

    def _require_accounts(self):
        if not self._accounts_loaded and not self.load_accounts():
            raise RemoteUnavailable("Accounts could not be loaded from the remote store")

    def list_accounts(self) -> List[Account]:
        """
        return all accounts
        """
        return list(self._accounts.values())

    def pending_accounts(self) -> List[Account]:
        """
        return the accounts awaiting approval
        """
        return [a for a in self._accounts.values() if a.status == STATUS_PENDING]

    def get_account(self, ident) -> Account:
        """
        return the account with the given identifier

        :raises ObjectNotFound:  if no such account exists
        """
        acct = self._accounts.get(ident)
        if acct is None:
            raise ObjectNotFound("account", ident)
        return acct

    def get_account_by_username(self, username: str) -> Account:
        """
        return the account with the given login name, or None if there is no such account
        """
        for acct in self._accounts.values():
            if acct.username == username:
                return acct
        return None

    def register_account(self, username: str, credential: str, actor: str=None) -> Account:
        """
        create a new account awaiting approval.

        :param str username:    the login name for the account
        :param str credential:  the hashed credential secret
        :raises ValidationError:     if the username or credential is empty
        :raises NameConflict:        if the username is already in use
        :raises PersistenceFailure:  if the account list could not be saved
        """
        errors = []
        if not username or not isinstance(username, str) or not username.strip():
            errors.append("username: required")
        if not credential or not isinstance(credential, str):
            errors.append("password: required")
        if errors:
            raise ValidationError(errors=errors)

        with self._accounts_lock:
            self._require_accounts()
            if self.get_account_by_username(username):
                raise NameConflict(username, "username")
            acct = Account({'id': self._next_account_id, 'username': username,
                            'password': credential, 'role': ROLE_USER, 'status': STATUS_PENDING})
            self._commit_accounts(self.list_accounts() + [acct])
            acct = self.get_account(acct.id)

        self.record_event(aud.USER_REGISTER, f"New user registered: {username}", actor or username,
                          {"userId": acct.id})
        return acct

    def _update_account(self, ident, updates: Mapping, protect_op: str=None) -> Account:
        with self._accounts_lock:
            self._require_accounts()
            acct = self.get_account(ident)
            if protect_op and self.guardian.is_primordial(acct):
                raise Forbidden(protect_op, acct.username,
                                f"Cannot {protect_op} the primary administrator account")
            updated = merge_account_update(acct, updates)
            self._commit_accounts([updated if a.id == ident else a for a in self.list_accounts()])
            return self.get_account(ident)

    def approve_account(self, ident, actor: str=None) -> Account:
        """
        approve an account so that its user may log in

        :raises ObjectNotFound:      if the account does not exist
        :raises PersistenceFailure:  if the account list could not be saved
        """
        acct = self._update_account(ident, {'status': STATUS_APPROVED})
        self.record_event(aud.USER_APPROVE, f"User approved: {acct.username}", actor,
                          {"userId": ident})
        return acct

    def reject_account(self, ident, actor: str=None) -> Account:
        """
        reject an account's registration

        :raises ObjectNotFound:      if the account does not exist
        :raises Forbidden:           if the account is the primordial administrator
        :raises PersistenceFailure:  if the account list could not be saved
        """
        acct = self._update_account(ident, {'status': STATUS_REJECTED}, "reject")
        self.record_event(aud.USER_REJECT, f"User rejected: {acct.username}", actor,
                          {"userId": ident})
        return acct

    def grant_admin(self, ident, actor: str=None) -> Account:
        """
        give an account the admin role

        :raises ObjectNotFound:      if the account does not exist
        :raises PersistenceFailure:  if the account list could not be saved
        """
        acct = self._update_account(ident, {'role': ROLE_ADMIN})
        self.record_event(aud.USER_ADMIN, f"User granted admin role: {acct.username}", actor,
                          {"userId": ident})
        return acct

    def revoke_admin(self, ident, actor: str=None) -> Account:
        """
        remove the admin role from an account

        :raises ObjectNotFound:      if the account does not exist
        :raises Forbidden:           if the account is the primordial administrator
        :raises PersistenceFailure:  if the account list could not be saved
        """
        acct = self._update_account(ident, {'role': ROLE_USER}, "revoke admin role from")
        self.record_event(aud.USER_ADMIN_REMOVE, f"Admin role removed from user: {acct.username}",
                          actor, {"userId": ident})
        return acct

    def set_credential(self, ident, credential: str, actor: str=None) -> Account:
        """
        replace an account's credential secret (e.g. to supersede the administrator's initial
        credential with a properly hashed one)

        :raises ObjectNotFound:      if the account does not exist
        :raises ValidationError:     if the credential is empty
        :raises PersistenceFailure:  if the account list could not be saved
        """
        acct = self._update_account(ident, {'password': credential})
        self.record_event(aud.SYSTEM, f"Credential updated for user: {acct.username}", actor,
                          {"userId": ident})
        return acct

    def delete_account(self, ident, actor: str=None):
        """
        delete an account

        :raises ObjectNotFound:      if the account does not exist
        :raises Forbidden:           if the account is the primordial administrator
        :raises PersistenceFailure:  if the account list could not be saved
        """
        with self._accounts_lock:
            self._require_accounts()
            acct = self.get_account(ident)
            if self.guardian.is_primordial(acct):
                raise Forbidden("delete", acct.username,
                                "Cannot delete the primary administrator account")
            self._commit_accounts([a for a in self.list_accounts() if a.id != ident])

        self.record_event(aud.USER_DELETE, f"User deleted: {acct.username}", actor,
                          {"userId": ident})
