"""
The record types held in the catalog:  :py:class:`CatalogEntry` (a file) and :py:class:`Account`
(a user).  Each wraps the dictionary form of the record (the form that is returned to the route
layer and, in the case of accounts, persisted) and exposes its fields as properties.

Records should be treated as values:  the catalog service never changes a record that it has
handed out; it replaces it with an updated copy (see :py:func:`merge_entry_update` and
:py:func:`merge_account_update`).
"""
import re, os
from collections.abc import Mapping, Container
from copy import deepcopy
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from .exceptions import ValidationError

UNKNOWN_UPLOADER = "unknown"
DEF_ADMIN_USERNAME = "rdxhere.exe"
DEF_ADMIN_CREDENTIAL = "rdxpass"

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)

DEF_STORAGE_KEY = "file"
DELETED_BY_REQUEST = "request"
DELETED_BY_SCAN = "scan"
_unsafe_chars = re.compile(r'[^a-zA-Z0-9.\-]')

def now_iso() -> str:
    """
    return the current time as an ISO 8601 string (UTC)
    """
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds')

def parse_timestamp(value) -> datetime:
    """
    convert a timestamp in one of the forms encountered in stored metadata or remote listings into
    a timezone-aware datetime.  Accepted forms are ISO 8601 strings, RFC 1123 strings (as found in
    WebDAV listings), epoch seconds, and datetime instances.  None is returned if the value cannot
    be interpreted.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        out = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, timezone.utc)
    else:
        value = str(value).strip()
        try:
            out = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            try:
                out = parsedate_to_datetime(value)
            except (TypeError, ValueError, IndexError):
                out = None
            if out is None:
                try:
                    out = datetime.strptime(value, "%Y-%m-%d %H:%M:%S")
                except ValueError:
                    return None
    if out.tzinfo is None:
        out = out.replace(tzinfo=timezone.utc)
    return out

def to_iso(value) -> str:
    """
    normalize a timestamp value (see :py:func:`parse_timestamp`) to an ISO 8601 string, or
    return None if it cannot be interpreted.
    """
    dt = parse_timestamp(value)
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat(timespec='milliseconds')

def sanitize_name(name: str) -> str:
    """
    convert a user-provided file name into a form safe for use as a storage key:  any character
    other than an ASCII letter, a digit, a dot, or a hyphen is replaced by an underscore.
    """
    name = os.path.basename(str(name or "").replace('\\', '/'))
    out = _unsafe_chars.sub('_', name)
    if not out.strip('.'):
        out = DEF_STORAGE_KEY
    return out

def unique_storage_key(name: str, taken: Container) -> str:
    """
    return a sanitized storage key for the given name that is not among the ``taken`` keys.  If the
    sanitized name is taken, a numeric suffix is inserted before the extension (``report-1.pdf``,
    ``report-2.pdf``, ...).
    """
    key = sanitize_name(name)
    if key not in taken:
        return key

    base, ext = os.path.splitext(key)
    i = 1
    while f"{base}-{i}{ext}" in taken:
        i += 1
    return f"{base}-{i}{ext}"


class CatalogEntry(object):
    """
    a description of a file in the catalog.  The dictionary form (see :py:meth:`to_dict`) uses
    the following property names:

    ``id``
        the catalog-assigned identifier (an integer unique within the running process)
    ``filename``
        the storage key:  the sanitized name under which the file's bytes are stored
    ``originalFilename``
        the display name shown to users
    ``size``
        the size of the file in bytes
    ``mimeType``
        the content type of the file
    ``path``
        the full path to the file's bytes in the remote store
    ``uploadedAt``
        the ISO 8601 time of upload
    ``uploadedBy``
        the name of the uploading user (or ``"unknown"``)
    ``isDeleted``
        True if the entry has been soft-deleted
    ``deletedAt``
        the ISO 8601 time that the entry was soft-deleted (or None)
    ``deletedBy``
        "request" if the entry was explicitly deleted, "scan" if its object vanished (or None)
    """
    MUTABLE = ('size', 'mimeType', 'uploadedAt', 'uploadedBy')

    def __init__(self, data: Mapping):
        if data.get('id') is None:
            raise ValueError("CatalogEntry: data is missing its 'id' property")
        if not data.get('filename'):
            raise ValueError("CatalogEntry: data is missing its 'filename' property")
        self._data = self._initialize(dict(data))

    def _initialize(self, data):
        data.setdefault('originalFilename', data['filename'])
        data.setdefault('size', 0)
        data.setdefault('mimeType', "application/octet-stream")
        data.setdefault('path', data['filename'])
        if not data.get('uploadedAt'):
            data['uploadedAt'] = now_iso()
        if not data.get('uploadedBy'):
            data['uploadedBy'] = UNKNOWN_UPLOADER
        data['isDeleted'] = bool(data.get('isDeleted'))
        data.setdefault('deletedAt', None)
        data.setdefault('deletedBy', None)
        return data

    @property
    def id(self) -> int:
        return self._data['id']

    @property
    def storage_key(self) -> str:
        return self._data['filename']

    @property
    def display_name(self) -> str:
        return self._data['originalFilename']

    @property
    def size(self) -> int:
        return self._data['size']

    @property
    def content_type(self) -> str:
        return self._data['mimeType']

    @property
    def remote_path(self) -> str:
        return self._data['path']

    @property
    def uploaded_at(self) -> str:
        return self._data['uploadedAt']

    @property
    def uploaded_by(self) -> str:
        return self._data['uploadedBy']

    @property
    def deleted(self) -> bool:
        """
        True if this entry has been soft-deleted
        """
        return self._data['isDeleted']

    @property
    def deleted_at(self) -> str:
        return self._data.get('deletedAt')

    @property
    def deleted_by(self) -> str:
        """
        how the entry came to be deleted:  DELETED_BY_REQUEST (an explicit delete) or
        DELETED_BY_SCAN (its object disappeared from the remote store)
        """
        return self._data.get('deletedBy')

    def soft_deleted(self, by: str=DELETED_BY_REQUEST, when: str=None):
        """
        return a copy of this entry marked as soft-deleted.  If this entry is already deleted,
        the copy retains the original deletion time.
        """
        data = deepcopy(self._data)
        if not data['isDeleted']:
            data['isDeleted'] = True
            data['deletedAt'] = when or now_iso()
            data['deletedBy'] = by
        return CatalogEntry(data)

    def renamed(self, display_name: str, storage_key: str=None, remote_path: str=None):
        """
        return a copy of this entry with a new display name and, optionally, a new storage key
        and remote path.  This is the only means for changing identity fields.
        """
        data = deepcopy(self._data)
        data['originalFilename'] = display_name
        if storage_key:
            data['filename'] = storage_key
            if remote_path:
                data['path'] = remote_path
        return CatalogEntry(data)

    def to_dict(self) -> Mapping:
        """
        return a copy of the data in this entry as a dictionary
        """
        return deepcopy(self._data)

    def __eq__(self, other):
        return isinstance(other, CatalogEntry) and self._data == other._data

    def __repr__(self):
        return "CatalogEntry(%s: %s%s)" % (self.id, self.storage_key, (self.deleted and " [deleted]") or "")


class Account(object):
    """
    a user account.  The dictionary form (see :py:meth:`to_dict`) uses the property names
    ``id``, ``username``, ``password`` (the hashed credential), ``role``, ``status``, and
    ``isApproved``; the last is always kept consistent with ``status``.
    """
    MUTABLE = ('password', 'role', 'status')

    def __init__(self, data: Mapping):
        if data.get('id') is None:
            raise ValueError("Account: data is missing its 'id' property")
        self._data = dict(data)
        self._data.setdefault('role', ROLE_USER)
        self._data.setdefault('status', STATUS_PENDING)
        self._data['isApproved'] = self._data['status'] == STATUS_APPROVED

    @property
    def id(self) -> int:
        return self._data['id']

    @property
    def username(self) -> str:
        return self._data.get('username')

    @property
    def credential(self) -> str:
        """
        the (hashed) credential secret for this account
        """
        return self._data.get('password')

    @property
    def role(self) -> str:
        return self._data['role']

    @property
    def status(self) -> str:
        return self._data['status']

    @property
    def is_admin(self) -> bool:
        return self._data['role'] == ROLE_ADMIN

    @property
    def approved(self) -> bool:
        return self._data['isApproved']

    def to_dict(self, with_secret: bool=False) -> Mapping:
        """
        return a copy of the account data as a dictionary.  The credential is only included if
        ``with_secret`` is True; it should never be sent to clients.
        """
        out = deepcopy(self._data)
        if not with_secret:
            out.pop('password', None)
        return out

    def __eq__(self, other):
        return isinstance(other, Account) and self._data == other._data

    def __repr__(self):
        return "Account(%s: %s, %s, %s)" % (self.id, self.username, self.role, self.status)


def _check_mutable(updates: Mapping, mutable, what: str):
    bad = [k for k in updates if k not in mutable]
    if bad:
        raise ValidationError(f"Cannot update {what} properties: "+", ".join(bad),
                              [f"{k}: not updatable" for k in bad])

def merge_entry_update(entry: CatalogEntry, updates: Mapping) -> CatalogEntry:
    """
    return a copy of a catalog entry with the given field updates applied.  Only the fields listed
    in :py:attr:`CatalogEntry.MUTABLE` may be updated this way; the identity fields (id, storage
    key, path) change only through :py:meth:`CatalogEntry.renamed`.

    :raises ValidationError:  if the updates include a field that is not updatable or a bad value
    """
    _check_mutable(updates, CatalogEntry.MUTABLE, "file")
    data = entry.to_dict()
    if 'size' in updates:
        if not isinstance(updates['size'], int) or isinstance(updates['size'], bool) or \
           updates['size'] < 0:
            raise ValidationError("size: must be a non-negative integer")
    if 'uploadedAt' in updates:
        when = to_iso(updates['uploadedAt'])
        if not when:
            raise ValidationError("uploadedAt: not a recognizable timestamp")
        updates = dict(updates, uploadedAt=when)
    data.update(updates)
    return CatalogEntry(data)

def merge_account_update(acct: Account, updates: Mapping) -> Account:
    """
    return a copy of an account with the given field updates applied.  Only the fields listed in
    :py:attr:`Account.MUTABLE` may be updated; ``isApproved`` is derived from ``status``.

    :raises ValidationError:  if the updates include a field that is not updatable or a bad value
    """
    _check_mutable(updates, Account.MUTABLE, "account")
    if 'role' in updates and updates['role'] not in ROLES:
        raise ValidationError("role: must be one of "+", ".join(ROLES))
    if 'status' in updates and updates['status'] not in STATUSES:
        raise ValidationError("status: must be one of "+", ".join(STATUSES))
    if 'password' in updates and not updates['password']:
        raise ValidationError("password: must not be empty")
    data = acct.to_dict(True)
    data.update(updates)
    return Account(data)
