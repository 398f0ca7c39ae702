"""
Utilities for loading and applying configuration data.

Configuration for a LyreTeams service is a hierarchical dictionary typically read from a YAML or JSON
file (see :py:func:`load_from_file`).  A deployment that follows the original environment-variable
contract (``NEXTCLOUD_URL``, ``NEXTCLOUD_USERNAME``, etc.) can instead build its configuration with
:py:func:`config_from_env`.  This module also provides :py:func:`configure_log` for setting up the
root logger from configuration.
"""
import os, sys, json, logging
from collections.abc import Mapping
from copy import deepcopy

import yaml

from . import LyreTeamsException

NORMAL = 15
logging.addLevelName(NORMAL, "NORMAL")
LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"
DEF_BASE_FOLDER = "LyreTeams"
WEBDAV_PATH = "remote.php/webdav/"

global_logdir = None
global_logfile = None
_log_handler = None

class ConfigurationException(LyreTeamsException):
    """
    an exception indicating a missing, illegal, or inconsistent configuration parameter
    """
    def __init__(self, message=None, cause=None, param: str=None):
        """
        create the exception
        :param str message:  a description of the configuration problem
        :param Exception cause:  the underlying error that detected the problem (optional)
        :param str param:    the name of the offending configuration parameter (optional)
        """
        if not message:
            message = "Configuration error"
            if param:
                message += " in parameter " + param
        super(ConfigurationException, self).__init__(message, cause)
        self.param = param

def load_from_file(configfile: str) -> Mapping:
    """
    read the configuration from the given file and return it as a dictionary.  The file format is
    determined by its filename extension:  ``.json`` files are read as JSON; all others are parsed
    as YAML.

    :raises IOError:  if the file cannot be opened
    :raises ValueError:  if the file contents cannot be parsed
    """
    with open(configfile) as fd:
        if configfile.endswith('.json'):
            return json.load(fd)
        data = yaml.safe_load(fd)
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(configfile+": configuration does not contain a dictionary")
    return data

def merge_config(primary: Mapping, defconf: Mapping) -> Mapping:
    """
    do a deep merge of a primary configuration onto a default one, returning the merged result.
    Values in ``primary`` override those in ``defconf``; where both contain a dictionary for the
    same key, the two dictionaries are merged recursively.  Neither input is altered.
    """
    out = deepcopy(defconf)
    for key, val in primary.items():
        if isinstance(val, Mapping) and isinstance(out.get(key), Mapping):
            out[key] = merge_config(val, out[key])
        else:
            out[key] = deepcopy(val)
    return out

def webdav_endpoint(url: str) -> str:
    """
    normalize a Nextcloud server URL to the endpoint of its WebDAV interface by appending
    ``remote.php/webdav/`` when it is not already included.
    """
    if WEBDAV_PATH.rstrip('/') not in url:
        url = url.rstrip('/') + '/' + WEBDAV_PATH
    elif not url.endswith('/'):
        url += '/'
    return url

def config_from_env(env: Mapping=None) -> Mapping:
    """
    build a storage configuration from environment variables.  If ``NEXTCLOUD_URL``,
    ``NEXTCLOUD_USERNAME``, and ``NEXTCLOUD_PASSWORD`` are all set, the configuration will select
    the WebDAV storage; otherwise, local disk storage (rooted at ``LOCAL_STORAGE_DIR`` or
    ``./storage``) is selected.  ``NEXTCLOUD_FOLDER`` sets the base folder in either case.
    """
    if env is None:
        env = os.environ

    storage = { 'base_folder': env.get('NEXTCLOUD_FOLDER') or DEF_BASE_FOLDER }
    if env.get('NEXTCLOUD_URL') and env.get('NEXTCLOUD_USERNAME') and env.get('NEXTCLOUD_PASSWORD'):
        storage['type'] = 'webdav'
        storage['webdav'] = {
            'service_endpoint': webdav_endpoint(env['NEXTCLOUD_URL']),
            'authentication': {
                'user': env['NEXTCLOUD_USERNAME'],
                'pass': env['NEXTCLOUD_PASSWORD']
            }
        }
    else:
        storage['type'] = 'local'
        storage['local_root'] = env.get('LOCAL_STORAGE_DIR') or os.path.join(os.getcwd(), "storage")

    return { 'storage': storage }

def configure_log(logfile: str=None, level: int=None, format: str=None, config: Mapping=None,
                  addstderr=False):
    """
    configure the root logger to send messages to a log file.

    :param str logfile:   the path to the log file to write to; if relative, it will be taken to be
                          relative to the ``logdir`` configuration parameter.  If not provided, the
                          ``logfile`` configuration parameter is used.
    :param int level:     the logging level threshold; defaults to the ``loglevel`` configuration
                          parameter or, if not set, :py:data:`NORMAL`.
    :param str format:    the format string for messages
    :param dict config:   the configuration to consult for defaults
    :param bool|str addstderr:  if True, also send messages to standard error; if a string, use it
                          as the format for those messages.
    """
    global global_logdir, global_logfile, _log_handler
    if not config:
        config = {}
    if not logfile:
        logfile = config.get('logfile')
    if level is None:
        level = config.get('loglevel', NORMAL)
    if not format:
        format = config.get('logformat', LOG_FORMAT)

    rootlog = logging.getLogger()
    if logfile:
        if not os.path.isabs(logfile):
            logdir = config.get('logdir', os.getcwd())
            logfile = os.path.join(logdir, logfile)
        global_logdir = os.path.dirname(logfile)
        global_logfile = logfile

        if _log_handler:
            rootlog.removeHandler(_log_handler)
        _log_handler = logging.FileHandler(logfile)
        _log_handler.setLevel(logging.DEBUG)
        _log_handler.setFormatter(logging.Formatter(format))
        rootlog.addHandler(_log_handler)

    if addstderr:
        if not isinstance(addstderr, str):
            addstderr = format
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(addstderr))
        rootlog.addHandler(handler)

    rootlog.setLevel(level)
