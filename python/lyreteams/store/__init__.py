"""
The storage layer of LyreTeams:  the file catalog and account list kept in a remote (WebDAV) store.

The primary entry point is :py:class:`~lyreteams.store.service.CatalogService`, which keeps the
in-memory catalog consistent with the remote store.  It relies on the following components:

  * :py:mod:`~lyreteams.store.gateway` and :py:mod:`~lyreteams.store.webdav` -- access to the
    remote store
  * :py:mod:`~lyreteams.store.codec` -- the persisted document formats
  * :py:mod:`~lyreteams.store.reconcile` -- deriving the catalog from a listing of the store
  * :py:mod:`~lyreteams.store.persist` -- backed-up, retried, and verified document writes
  * :py:mod:`~lyreteams.store.guardian` -- the account list invariants
  * :py:mod:`~lyreteams.store.audit` -- the audit event log
"""
from .exceptions import *
from .records import CatalogEntry, Account
from .gateway import RemoteGateway, LocalDiskGateway, create_gateway
from .service import CatalogService, MutationResult
