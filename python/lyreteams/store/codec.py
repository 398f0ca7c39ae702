"""
Conversion between the catalog's records and the JSON documents persisted in the remote store.

The remote store holds the following documents under a base folder (see :py:class:`StoreLayout`):

``catalog.json``
    the bulk metadata document:  an object keyed by storage key whose values have the form
    ``{originalFilename, uploadedBy, uploadedAt}``
``metadata/<storage-key>.json``
    a sidecar document for each file with the form ``{filename, size, uploaded_on, uploaded_by,
    mime_type, system_filename, file_id}``, where ``size`` and ``uploaded_on`` are human-readable
    strings
``accounts.json``
    the account list:  an array of ``{id, username, password, role, status, isApproved}``

Decoding is tolerant:  an absent or unparseable document decodes to an empty structure (with the
parse failure logged) rather than raising an exception.
"""
import json, logging, os
from collections import OrderedDict
from collections.abc import Mapping
from typing import List

from .exceptions import RemoteError, RemoteNotFound
from .records import CatalogEntry, to_iso, parse_timestamp
from ..utils.logging import blab

DOC_ENCODING = "utf-8"
UPLOAD_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEF_CONTENT_TYPE = "application/octet-stream"

MIME_TYPES = {
    'jpg':  'image/jpeg',
    'jpeg': 'image/jpeg',
    'png':  'image/png',
    'gif':  'image/gif',
    'webp': 'image/webp',
    'pdf':  'application/pdf',
    'mp4':  'video/mp4',
    'mov':  'video/quicktime',
    'mp3':  'audio/mpeg',
    'wav':  'audio/wav',
    'txt':  'text/plain',
    'doc':  'application/msword',
    'docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    'xls':  'application/vnd.ms-excel',
    'xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'ppt':  'application/vnd.ms-powerpoint',
    'pptx': 'application/vnd.openxmlformats-officedocument.presentationml.presentation',
    'zip':  'application/zip',
    'rar':  'application/x-rar-compressed'
}

def content_type_for(name: str) -> str:
    """
    return the content type implied by the given file name's extension
    """
    ext = os.path.splitext(name or "")[1].lstrip('.').lower()
    return MIME_TYPES.get(ext, DEF_CONTENT_TYPE)

def human_size(nbytes: int) -> str:
    """
    format a byte count for display (e.g. "12 B", "1.5 KB", "3.2 MB")
    """
    size = float(nbytes or 0)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            break
        size /= 1024
    if unit == "B":
        return "%d B" % size
    return "%.1f %s" % (size, unit)

def format_upload_date(when) -> str:
    dt = parse_timestamp(when)
    if dt is None:
        return ""
    return dt.strftime(UPLOAD_DATE_FORMAT)


class StoreLayout(object):
    """
    the names of the folders and documents that make up a catalog in the remote store.  All paths
    are relative to the root of the remote store.
    """
    FILES = "cdns"
    METADATA = "metadata"
    LOGS = "logs"
    CATALOG = "catalog.json"
    ACCOUNTS = "accounts.json"
    AUDIT = "logs.json"

    def __init__(self, base_folder: str):
        self.base = base_folder.strip('/')

    def _join(self, *parts):
        return "/".join([p for p in (self.base,)+parts if p])

    @property
    def files_folder(self) -> str:
        return self._join(self.FILES)

    @property
    def metadata_folder(self) -> str:
        return self._join(self.METADATA)

    @property
    def logs_folder(self) -> str:
        return self._join(self.LOGS)

    @property
    def catalog_path(self) -> str:
        return self._join(self.CATALOG)

    @property
    def accounts_path(self) -> str:
        return self._join(self.ACCOUNTS)

    @property
    def audit_path(self) -> str:
        return self._join(self.LOGS, self.AUDIT)

    @property
    def folders(self) -> List[str]:
        """
        the folders that must exist for a catalog, parents first
        """
        return [self.base, self.files_folder, self.metadata_folder, self.logs_folder]

    def file_path(self, storage_key: str) -> str:
        return self._join(self.FILES, storage_key)

    def sidecar_path(self, storage_key: str) -> str:
        return self._join(self.METADATA, storage_key + ".json")

    @property
    def reserved_names(self) -> frozenset:
        """
        document names that never represent user files
        """
        return frozenset([self.CATALOG, self.ACCOUNTS, self.AUDIT, "files.json", "users.json",
                          "accounts.backup.json", "catalog.backup.json"])


def dumps(doc) -> bytes:
    """
    serialize a JSON document for storage
    """
    return json.dumps(doc, indent=2).encode(DOC_ENCODING)

def loads(data: bytes, what: str, log: logging.Logger=None, default=None):
    """
    deserialize a stored JSON document, returning ``default`` (with a logged warning) if it
    cannot be parsed.
    """
    try:
        if isinstance(data, bytes):
            data = data.decode(DOC_ENCODING)
        if not data.strip():
            return default
        return json.loads(data, object_pairs_hook=OrderedDict)
    except ValueError as ex:
        if log:
            log.warning("%s: unable to parse JSON document (ignoring): %s", what, str(ex))
        return default

def encode_catalog(entries) -> Mapping:
    """
    encode the given active catalog entries into the bulk metadata document
    """
    out = OrderedDict()
    for entry in entries:
        if entry.deleted:
            continue
        out[entry.storage_key] = OrderedDict([
            ("originalFilename", entry.display_name),
            ("uploadedBy",       entry.uploaded_by),
            ("uploadedAt",       entry.uploaded_at)
        ])
    return out

def decode_catalog(doc, log: logging.Logger=None) -> Mapping:
    """
    extract the cached metadata from a bulk metadata document.  The returned dictionary maps
    storage keys to partial records using the :py:class:`~lyreteams.store.records.CatalogEntry`
    property names (``originalFilename``, ``uploadedBy``, ``uploadedAt``).  Malformed values are
    skipped.
    """
    out = OrderedDict()
    if doc is None:
        return out
    if not isinstance(doc, Mapping):
        if log:
            log.warning("catalog document is not a JSON object; ignoring its contents")
        return out

    for key, meta in doc.items():
        if not isinstance(meta, Mapping):
            if log:
                log.warning("catalog document: skipping malformed entry for %s", key)
            continue
        rec = OrderedDict()
        if meta.get('originalFilename'):
            rec['originalFilename'] = str(meta['originalFilename'])
        if meta.get('uploadedBy'):
            rec['uploadedBy'] = str(meta['uploadedBy'])
        when = to_iso(meta.get('uploadedAt'))
        if when:
            rec['uploadedAt'] = when
        out[key] = rec
    return out

def encode_sidecar(entry: CatalogEntry) -> Mapping:
    """
    encode a catalog entry into its sidecar document
    """
    return OrderedDict([
        ("filename",        entry.display_name),
        ("size",            human_size(entry.size)),
        ("uploaded_on",     format_upload_date(entry.uploaded_at)),
        ("uploaded_by",     entry.uploaded_by),
        ("mime_type",       entry.content_type),
        ("system_filename", entry.storage_key),
        ("file_id",         entry.id)
    ])

def decode_sidecar(doc, log: logging.Logger=None) -> Mapping:
    """
    extract the cached metadata from a sidecar document into a partial record (using
    :py:class:`~lyreteams.store.records.CatalogEntry` property names).  An empty dictionary is
    returned if the document is malformed.
    """
    out = OrderedDict()
    if not isinstance(doc, Mapping):
        if doc is not None and log:
            log.warning("sidecar document is not a JSON object; ignoring")
        return out
    if doc.get('filename'):
        out['originalFilename'] = str(doc['filename'])
    if doc.get('uploaded_by'):
        out['uploadedBy'] = str(doc['uploaded_by'])
    when = to_iso(doc.get('uploaded_on'))
    if when:
        out['uploadedAt'] = when
    return out

def merge_cached(bulk: Mapping, sidecars: Mapping) -> Mapping:
    """
    combine the metadata from the bulk document with that from the sidecar documents.  Where both
    describe the same storage key, the sidecar's values win; fields that the sidecar lacks are
    taken from the bulk document.
    """
    out = OrderedDict((k, OrderedDict(v)) for k, v in bulk.items())
    for key, meta in sidecars.items():
        out.setdefault(key, OrderedDict()).update(meta)
    return out

def encode_accounts(accounts) -> List[Mapping]:
    """
    encode the given accounts into the account list document (credentials included)
    """
    return [a.to_dict(True) for a in accounts]

def decode_accounts(doc, log: logging.Logger=None) -> List[Mapping]:
    """
    extract the raw account records from an account list document.  Items that are not JSON
    objects are dropped; the remaining records are returned unvalidated (see
    :py:class:`~lyreteams.store.guardian.AccountGuardian`).
    """
    if doc is None:
        return []
    if not isinstance(doc, list):
        if log:
            log.warning("accounts document is not a JSON array; ignoring its contents")
        return []
    out = []
    for item in doc:
        if isinstance(item, Mapping):
            out.append(dict(item))
        elif log:
            log.warning("accounts document: dropping non-object item: %s", repr(item)[:40])
    return out


class MetadataCodec(object):
    """
    a reader of the metadata documents stored in the remote store.  It combines a gateway with the
    decoding functions of this module.

    :param RemoteGateway gateway:  the gateway for accessing the remote store
    :param StoreLayout    layout:  the names of the catalog's documents
    :param Logger            log:  the Logger to use for messages
    """

    def __init__(self, gateway, layout: StoreLayout, log: logging.Logger=None):
        if not log:
            log = logging.getLogger("lyreteams.store.codec")
        self.gw = gateway
        self.layout = layout
        self.log = log

    def read_document(self, path: str, default=None):
        """
        read and parse a JSON document from the remote store.  ``default`` is returned if the
        document does not exist or cannot be parsed.

        :raises RemoteError:  if the document could not be read for any reason other than its
                              absence
        """
        try:
            fd = self.gw.read(path)
        except RemoteNotFound:
            blab(self.log, "%s: document not found", path)
            return default
        try:
            return loads(fd.read(), path, self.log, default)
        finally:
            fd.close()

    def load_cached_metadata(self) -> Mapping:
        """
        load the cached file metadata from both the bulk document and the sidecar documents,
        merged so that sidecar values win.  Failures to read individual documents are logged and
        otherwise ignored.
        """
        try:
            bulk = decode_catalog(self.read_document(self.layout.catalog_path), self.log)
        except RemoteError as ex:
            self.log.warning("Unable to read bulk catalog document: %s", str(ex))
            bulk = OrderedDict()

        sidecars = OrderedDict()
        try:
            listing = self.gw.list(self.layout.metadata_folder)
        except RemoteNotFound:
            listing = []
        except RemoteError as ex:
            self.log.warning("Unable to list sidecar documents: %s", str(ex))
            listing = []

        for item in listing:
            if item.get('kind') != 'file' or not item['name'].endswith(".json"):
                continue
            key = item['name'][:-len(".json")]
            path = self.layout.sidecar_path(key)
            try:
                meta = decode_sidecar(self.read_document(path), self.log)
            except RemoteError as ex:
                self.log.warning("%s: unable to read sidecar: %s", path, str(ex))
                continue
            if meta:
                blab(self.log, "loaded sidecar for %s", key)
                sidecars[key] = meta

        return merge_cached(bulk, sidecars)

    def load_accounts(self) -> List[Mapping]:
        """
        load the raw account records.  An absent or unparseable document yields an empty list.

        :raises RemoteError:  if the document could not be read due to a remote failure
        """
        return decode_accounts(self.read_document(self.layout.accounts_path), self.log)
