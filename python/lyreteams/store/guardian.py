"""
Enforcement of the invariants on the account list.

The central invariant is that exactly one account is the *primordial administrator* (identified
by a reserved login name) and that it always has the ``admin`` role and ``approved`` status.  The
:py:class:`AccountGuardian` restores this invariant (rather than merely checking it) and also
drops malformed account records.
"""
import logging
from collections.abc import Mapping
from typing import List, Tuple

from .records import (Account, DEF_ADMIN_USERNAME, DEF_ADMIN_CREDENTIAL, ROLES, STATUSES,
                      ROLE_USER, ROLE_ADMIN, STATUS_PENDING, STATUS_APPROVED)

class AccountGuardian(object):
    """
    a checker and repairer of account lists.

    This class looks for the following configuration parameters:

    ``admin_username``
        _str_ (optional).  the login name of the primordial administrator
        (default: "rdxhere.exe")
    ``admin_initial_password``
        _str_ (optional).  the credential given to a synthesized administrator account.  The
        caller is expected to replace it with a properly hashed credential (default: "rdxpass")

    :param dict config:  the ``accounts`` configuration
    :param Logger  log:  the Logger to use for messages
    """

    def __init__(self, config: Mapping=None, log: logging.Logger=None):
        if not config:
            config = {}
        if not log:
            log = logging.getLogger("lyreteams.store.guardian")
        self.log = log
        self.admin_username = config.get('admin_username', DEF_ADMIN_USERNAME)
        self.initial_credential = config.get('admin_initial_password', DEF_ADMIN_CREDENTIAL)

    def is_primordial(self, acct) -> bool:
        """
        return True if the given account (an :py:class:`~lyreteams.store.records.Account` or its
        dictionary form) is the primordial administrator
        """
        name = acct.username if isinstance(acct, Account) else acct.get('username')
        return name == self.admin_username

    def verify(self, accounts: List) -> Tuple[List[Account], List[str]]:
        """
        check the given accounts against the invariants and return a repaired copy.  The input
        is not changed.

        The following repairs are made:
          * records missing a valid id, a login name, or a credential are dropped;
          * records duplicating an earlier record's id or login name are dropped;
          * unrecognized role or status values are reset to ``user`` and ``pending``;
          * ``isApproved`` is made consistent with the status;
          * if no primordial administrator exists, one is synthesized (with the next available
            id and the initial credential);
          * if the primordial administrator lacks the admin role or approved status, these are
            set.

        :param list accounts:  the accounts to check, either as
                               :py:class:`~lyreteams.store.records.Account` instances or as
                               dictionaries
        :return:  a 2-tuple containing the repaired list of Account instances and a list of
                  descriptions of the corrections made (empty if none were needed)
        """
        corrections = []
        out = []
        ids = set()
        names = set()

        for rec in accounts:
            data = rec.to_dict(True) if isinstance(rec, Account) else dict(rec)
            ident = data.get('id')
            if not isinstance(ident, int) or isinstance(ident, bool) or \
               not data.get('username') or not data.get('password'):
                corrections.append("dropped malformed account record: id=%s, username=%s" %
                                   (ident, data.get('username')))
                continue
            if ident in ids or data['username'] in names:
                corrections.append("dropped duplicate account record: id=%s, username=%s" %
                                   (ident, data['username']))
                continue

            if data.get('role') not in ROLES:
                corrections.append("%s: reset unrecognized role, %s" % (data['username'],
                                                                        data.get('role')))
                data['role'] = ROLE_USER
            if data.get('status') not in STATUSES:
                corrections.append("%s: reset unrecognized status, %s" % (data['username'],
                                                                          data.get('status')))
                data['status'] = STATUS_PENDING
            if data.get('isApproved') != (data['status'] == STATUS_APPROVED):
                corrections.append("%s: made isApproved consistent with status" % data['username'])

            if data['username'] == self.admin_username and \
               (data['role'] != ROLE_ADMIN or data['status'] != STATUS_APPROVED):
                corrections.append("%s: restored administrator role and approval" %
                                   data['username'])
                data['role'] = ROLE_ADMIN
                data['status'] = STATUS_APPROVED

            ids.add(ident)
            names.add(data['username'])
            out.append(Account(data))

        if self.admin_username not in names:
            ident = max(ids) + 1 if ids else 1
            out.append(Account({
                'id': ident,
                'username': self.admin_username,
                'password': self.initial_credential,
                'role': ROLE_ADMIN,
                'status': STATUS_APPROVED
            }))
            corrections.append("%s: synthesized missing administrator account (id=%d)" %
                               (self.admin_username, ident))

        for msg in corrections:
            self.log.warning("Account repair: %s", msg)
        return out, corrections
