"""
a command-line interface for inspecting and reconciling a LyreTeams catalog.  The :py:func:`main`
function provides the implementation of the ``lyreadm`` script.
"""
import sys, os, re, logging
from argparse import ArgumentParser

import yaml

from ..base import config
from ..base.config import ConfigurationException
from .exceptions import CatalogException, RemoteUnavailable, RemoteError
from .codec import human_size
from .service import CatalogService

prog = re.sub(r'\.py$', '', os.path.basename(sys.argv[0]))

class Failure(Exception):
    """
    an exception indicating that the command failed and should exit with a non-zero status:
    1 for usage and configuration errors, 2 for remote store failures.
    """
    def __init__(self, message, exitcode=1, cause=None):
        super(Failure, self).__init__(message)
        self.exitcode = exitcode
        self.cause = cause

class _ArgumentParser(ArgumentParser):
    def error(self, message):
        raise Failure("usage error: "+message, 1)

def define_options(progname):
    """
    return an ArgumentParser instance that is configured with options
    for the command-line interface.
    """
    description = "inspect and reconcile the file catalog and account list of a LyreTeams " \
                  "deployment.  If no configuration file is given, the configuration is taken " \
                  "from the NEXTCLOUD_* (or LOCAL_STORAGE_DIR) environment variables."
    epilog = "Run '%(prog)s CMD -h' for help specifically on CMD."

    parser = _ArgumentParser(progname, None, description, epilog)

    parser.add_argument('-c', '--config-file', type=str, dest='cfgfile', metavar='FILE',
                        help="a file containing the configuration to use (YAML or JSON)")
    parser.add_argument('-l', '--logfile', action='store', dest='logfile', type=str, metavar='FILE',
                        help="write messages that normally go to standard error to FILE as well.  "+
                             "If -q is also specified, the messages will only go to the logfile")
    parser.add_argument('-v', '--verbose', action='store_true', dest='verbose',
                        help="print more (debug) messages to standard error and/or the log file")
    parser.add_argument('-q', '--quiet', action='store_true', dest='quiet',
                        help="suppress all error and warning messages to standard error")

    subparsers = parser.add_subparsers(title="subcommands", dest='cmd', metavar='CMD')
    subparsers.add_parser('files', help="list the active files in the catalog (after reconciling "
                                        "with the remote store)")
    p = subparsers.add_parser('reconcile', help="reconcile the catalog with the remote store and "
                                                "report the changes")
    p.add_argument('-t', '--timeout', type=float, dest='timeout', metavar='SECS', default=None,
                   help="give up if reconciliation does not complete within SECS seconds")
    p = subparsers.add_parser('accounts', help="list the user accounts (repairing the account "
                                               "list if necessary)")
    p.add_argument('-p', '--pending', action='store_true', dest='pending',
                   help="list only the accounts awaiting approval")
    return parser

def read_config(filepath):
    """
    read the configuration from a file having the given filepath

    :except Failure:  if the contents contains syntax or format errors
    :except IOError:  if a failure occurs while opening or reading the file
    """
    try:
        return config.load_from_file(filepath)
    except (ValueError, yaml.YAMLError) as ex:
        raise Failure("Config parsing error: "+str(ex), 1, ex)

def _setup_logging(opts):
    rootlog = logging.getLogger()
    level = (opts.verbose and logging.DEBUG) or logging.WARNING
    if opts.logfile:
        config.configure_log(opts.logfile, level, "%(asctime)s " + prog +
                             ".%(name)s %(levelname)s: %(message)s")

    if not opts.quiet:
        fmt = prog + ": %(levelname)s: %(message)s"
        hdlr = logging.StreamHandler(sys.stderr)
        hdlr.setFormatter(logging.Formatter(fmt))
        hdlr.setLevel(logging.DEBUG)
        rootlog.addHandler(hdlr)
        rootlog.setLevel(level)
    elif not rootlog.handlers:
        rootlog.addHandler(logging.NullHandler())

def list_files(svc, out):
    svc.reconcile()
    files = svc.list_files()
    for entry in files:
        out.write("%5s  %10s  %-29s  %s  (%s)\n" % (entry.id, human_size(entry.size),
                                                   entry.uploaded_at, entry.display_name,
                                                   entry.uploaded_by))
    out.write("%d files\n" % len(files))

def reconcile(svc, out, timeout=None):
    report = svc.reconcile(timeout)
    if report is None:
        out.write("reconciliation was cancelled\n")
        return
    for entry in report.added:
        out.write("added:    %s\n" % entry.storage_key)
    for entry in report.retired:
        out.write("retired:  %s\n" % entry.storage_key)
    for key in report.leftovers:
        out.write("leftover: %s\n" % key)
    out.write(str(report) + "\n")

def list_accounts(svc, out, pending=False):
    if not svc.load_accounts():
        raise Failure("Unable to load accounts from the remote store", 2)
    accounts = svc.pending_accounts() if pending else svc.list_accounts()
    for acct in accounts:
        out.write("%5s  %-24s  %-6s  %s\n" % (acct.id, acct.username, acct.role, acct.status))

def main(progname, args, out=None):
    """
    execute the requested subcommand

    :param str progname:  the name to use for the program in messages
    :param list args:     the command-line arguments (excluding the program name)
    :param out:           the stream to write results to (default: standard output)
    :raises Failure:      if the command could not be completed
    """
    if out is None:
        out = sys.stdout
    parser = define_options(progname)
    opts = parser.parse_args(args)
    if not opts.cmd:
        raise Failure("Missing subcommand; run with -h for help", 1)
    _setup_logging(opts)

    if opts.cfgfile:
        try:
            cfg = read_config(opts.cfgfile)
        except EnvironmentError as ex:
            raise Failure("problem reading config file, {0}: {1}"
                          .format(opts.cfgfile, ex.strerror), 1, ex) from ex
        if not cfg.get('storage'):
            cfg = config.merge_config(cfg, config.config_from_env())
    else:
        cfg = config.config_from_env()

    # administrative inspection is not audited
    cfg.setdefault('audit', {})['enabled'] = False

    try:
        svc = CatalogService(cfg, log=logging.getLogger(progname))
    except ConfigurationException as ex:
        raise Failure(str(ex), 1, ex) from ex

    try:
        if opts.cmd == "files":
            list_files(svc, out)
        elif opts.cmd == "reconcile":
            reconcile(svc, out, opts.timeout)
        elif opts.cmd == "accounts":
            list_accounts(svc, out, opts.pending)
    except (RemoteUnavailable, RemoteError) as ex:
        raise Failure("Remote store failure: "+str(ex), 2, ex) from ex
    except CatalogException as ex:
        raise Failure(str(ex), 2, ex) from ex
    finally:
        svc.shutdown(10)
