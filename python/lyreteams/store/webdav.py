"""
This module provides a gateway class, :py:class:`WebDAVGateway`, that carries out the remote
object operations against a WebDAV service such as Nextcloud.  It leverages the
``webdav3.client`` package to carry out standard WebDAV operations; folder listings are done with
a PROPFIND request whose response is parsed with lxml via the utility functions also included
here.

Every request is issued with a bounded timeout (the ``timeout`` configuration parameter), and all
``webdav3`` exceptions are translated into :py:class:`~lyreteams.store.exceptions.RemoteError`
subclasses.
"""
import io, logging, re
from collections import OrderedDict
from collections.abc import Mapping
from typing import List
from urllib.parse import urlparse, urlunparse, urljoin, unquote, urlsplit

from webdav3 import client as wd3c
from webdav3.client import etree
from webdav3.exceptions import WebDavException
import requests

from ..base.config import ConfigurationException
from .gateway import RemoteGateway
from .records import to_iso
from .exceptions import *

DEF_TIMEOUT = 30

class WebDAVGateway(RemoteGateway):
    """
    A gateway to a WebDAV service.  It is a wrapper around the webdav3.client interface which is
    available via the ``wdcli`` property.

    The class looks for the following configuration parameters:

    ``service_endpoint``
        _str_ (required).  the WebDAV endpoint URL pointing to the remote collection (directory)
        that should be the root of subsequent accesses (e.g.
        ``https://cloud.example.com/remote.php/webdav/``).
    ``ca_bundle``
        _str_ (optional).  the path to a CA certificate bundle which should be used to verify
        the WebDAV's site certificate.
    ``public_prefix``
        _str_ (optional).  the root path of the service endpoint that is part of a proxy web
        server's routing.  This may be needed (depending on the WebDAV server configuration)
        to properly parse PROPFIND responses if they do not include this path when listing
        resource URLs being described.
    ``timeout``
        _int_ (optional).  the maximum number of seconds to wait on any single request
        (default: 30).
    ``authentication``
        _dict_ (required).  the data required to authenticate to the WebDAV service; it must
        contain ``user`` and ``pass`` (the user name and password).

    :param dict config:  the configuration dictionary
    :param Logger  log:  the Logger to use for log messages

    :raises ConfigurationException:  if there are missing or inconsistent configuration parameters
    """
    def __init__(self, config: Mapping, log: logging.Logger=None):
        """
        initialize the gateway

        :param dict config:  the configuration parameters for this gateway; see class documentation
                             for the parameter descriptions.
        :param Logger log:   the Logger object to use for messages from this gateway.  If not
                             provided, a default logger named "lyreteams.store.webdav" will be used.
        """
        if not log:
            log = logging.getLogger("lyreteams.store.webdav")
        self.log = log
        self.cfg = config

        if not config.get("service_endpoint"):
            raise ConfigurationException("WebDAVGateway: Missing required config parameter: "+
                                         "service_endpoint", param="service_endpoint")
        ep = urlparse(config["service_endpoint"])
        if not ep.scheme or not ep.netloc:
            raise ConfigurationException("WebDAVGateway: config param service_endpoint not a URL",
                                         param="service_endpoint")

        self._wdcopts = {
            'webdav_hostname': urlunparse((ep[0], ep[1], '', '', '', '')),
            'webdav_root': ep.path or '/',
            'webdav_timeout': config.get('timeout', DEF_TIMEOUT)
        }
        self._add_auth_opts(config.get('authentication', {}), self._wdcopts)

        self.wdcli = wd3c.Client(self._wdcopts)
        self.wdcli.verify = self.cfg.get('ca_bundle', True)

    def _add_auth_opts(self, authcfg, wd3opts):
        if not authcfg:
            self.log.warning("No authentication parameters provided; assuming none are needed")
            return
        if not authcfg.get('user') or not authcfg.get('pass'):
            raise ConfigurationException("WebDAVGateway: authentication requires both user and pass",
                                         param="authentication")
        wd3opts['webdav_login'] = authcfg['user']
        wd3opts['webdav_password'] = authcfg['pass']

    def _remote_error(self, ex: Exception, what: str, path: str) -> RemoteError:
        # translate a webdav3 (or transport) exception into our RemoteError family
        msg = f"{what}: {str(ex)}"
        if isinstance(ex, (wd3c.NoConnection, wd3c.ConnectionException, requests.RequestException)):
            return RemoteCommError(msg, path, ex)
        if isinstance(ex, (wd3c.RemoteResourceNotFound, wd3c.RemoteParentNotFound)):
            return RemoteNotFound(path, msg, ex)
        if isinstance(ex, wd3c.NotEnoughSpace):
            return RemoteServerError(msg, path, 507, ex)
        if isinstance(ex, wd3c.ResponseErrorCode):
            if ex.code == 404:
                return RemoteNotFound(path, msg, ex)
            if ex.code < 500:
                return RemoteClientError(msg, path, ex.code, ex)
            return RemoteServerError(msg, path, ex.code, ex)
        return RemoteServerError(msg, path, cause=ex)

    def exists(self, path):
        """
        return True if the given path exists on the server
        """
        try:
            return self.wdcli.check(path)
        except (WebDavException, requests.RequestException) as ex:
            raise self._remote_error(ex, "Failed to check existence", path) from ex

        # Note wdcli.check() will return False if any error code > 400 is returned (not ideal)

    def read(self, path):
        buff = io.BytesIO()
        try:
            self.wdcli.download_from(buff, path)
        except (WebDavException, requests.RequestException) as ex:
            raise self._remote_error(ex, "Failed to read object", path) from ex
        buff.seek(0)
        return buff

    def write(self, path, data, overwrite=True):
        if not overwrite and self.exists(path):
            raise RemoteClientError("Unable to write object: already exists", path, 412)
        if isinstance(data, (bytes, bytearray)):
            data = io.BytesIO(data)
        try:
            self.wdcli.upload_to(data, path)
        except (WebDavException, requests.RequestException) as ex:
            raise self._remote_error(ex, "Failed to write object", path) from ex

    def list(self, folder):
        info = self.list_folder_info(folder)
        folder = folder.strip('/')
        out = []
        for path, props in info.items():
            if path == folder:
                continue
            out.append(OrderedDict([
                ('name', path.rsplit('/', 1)[-1]),
                ('size', _to_int(props.get('getcontentlength', props.get('size')))),
                ('modified', to_iso(props.get('modified'))),
                ('kind', props.get('type', "file"))
            ]))
        return out

    def delete(self, path):
        try:
            self.wdcli.clean(path)
        except wd3c.RemoteResourceNotFound:
            self.log.debug("%s: not found; nothing to delete", path)
        except (WebDavException, requests.RequestException) as ex:
            err = self._remote_error(ex, "Failed to delete resource", path)
            if isinstance(err, RemoteNotFound):
                return
            raise err from ex

    def copy(self, src, dest):
        try:
            self.wdcli.copy(src, dest)
        except (WebDavException, requests.RequestException) as ex:
            raise self._remote_error(ex, "Failed to copy resource", src) from ex

    def move(self, src, dest):
        try:
            self.wdcli.move(src, dest, overwrite=True)
        except (WebDavException, requests.RequestException) as ex:
            raise self._remote_error(ex, "Failed to move resource", src) from ex

    def ensure_directory(self, path):
        """
        Ensure that a directory with given a path exists, creating it if necessary
        """
        try:
            self.wdcli.mkdir(path)
        except (WebDavException, requests.RequestException) as ex:
            raise self._remote_error(ex, "Failed to create directory", path) from ex

    def list_folder_info(self, path):
        """
        retrieve resource info for the contents of the folder with the given path.  The returned
        dictionary maps each resource path (relative to the service endpoint, including that of
        the folder itself) to a dictionary of its properties.
        """
        if not path:
            path = "/"
        elif not path.startswith('/'):
            path = "/"+path

        try:
            resp = self.wdcli.execute_request("list", path, info_request)  # default Depth: 1
        except (WebDavException, requests.RequestException) as ex:
            raise self._remote_error(ex, "Failed to list folder", path) from ex

        base = self.cfg['service_endpoint']
        if self.cfg.get('public_prefix'):
            base = urljoin(self.cfg['public_prefix'], urlparse(base).path.lstrip('/'))

        return parse_propfind_info(resp.text, base)


def _to_int(val):
    try:
        return int(val)
    except (TypeError, ValueError):
        return 0


info_request = """<?xml version="1.0"?>
<d:propfind xmlns:d="DAV:" xmlns:oc="http://owncloud.org/ns" xmlns:nc="http://nextcloud.org/ns">
  <d:prop>
    <d:resourcetype/><d:getlastmodified/>
    <d:getetag/><d:getcontentlength/><d:getcontenttype/>
    <oc:fileid/><oc:size/>
  </d:prop>
</d:propfind>
"""

_re_ns = re.compile(r'^\{[^\}]+\}')

def propfind_resp_to_dict(respel):
    """
    convert a propfind response etree element into a dictionary of properties
    """
    href_el = next(iter(respel.findall(".//{DAV:}href")), None)
    path = unquote(urlsplit(href_el.text).path) if href_el is not None else None

    dav_props = {
        '{DAV:}getlastmodified': "modified",
        '{DAV:}getetag':         "etag",
        '{DAV:}getcontenttype':  "contenttype",
        '{DAV:}resourcetype':    "type",
    }
    props = respel.xpath('.//d:prop', namespaces={"d": "DAV:"})
    if not props:
        raise ValueError("propfind_resp_to_dict(): Input Element does not look like a PROPFIND "+
                         "response: missing d:prop descendent element")
    props = respel.xpath('.//d:prop[contains(../d:status,"200 OK")]', namespaces={"d": "DAV:"})
    if not props:
        raise ValueError("propfind_resp_to_dict(): Input Element contains no valid property values")
    props = props[0]

    out = OrderedDict()
    if path:
        out['urlpath'] = path
    for child in props:
        if child.tag in dav_props:
            name = dav_props[child.tag]
        else:
            name = _re_ns.sub('', child.tag)

        if child.tag == "{DAV:}resourcetype":
            if len(child) > 0 and child[0].tag == "{DAV:}collection":
                value = "folder"
            else:
                value = "file"
        else:
            value = child.text
        out[name] = value

    return out

def parse_propfind_info(content, davbase):
    """
    Extract the properties in a PROPFIND XML response into a dictionary where each key is
    a file path and the value is a dictionary of properties for that file.
    :param str content:  the XML response message to parse
    :param str davbase:  the base WebDAV endpoint URL; the file paths appearing as keys in the
                         response will be relative to this base endpoint path.
    :raises RemoteServerError:  if the content cannot be parsed
    """
    if davbase:
        davbase = urlparse(davbase).path.strip('/')
    davbase = f"/{davbase}/" if davbase else "/"

    out = OrderedDict()
    for respel in extract_propfind_responses(content):
        try:
            info = propfind_resp_to_dict(respel)
        except ValueError:
            continue
        path = info.get('urlpath')
        if path and (path+'/').startswith(davbase):
            path = path[len(davbase):].strip('/')
        else:
            # unexpected
            continue
        info['path'] = path
        out[path] = info

    return out

def extract_propfind_responses(content) -> List:
    """
    return a list of the response elements found in the given propfind request response
    :param str content:  the XML response message to parse
    """
    # adapted from webdavclient3's WebDavXmlUtils.parse_get_list_info_response()
    out = []
    if isinstance(content, str):
        content = content.encode('utf-8')
    try:
        tree = etree.fromstring(content)
        for resp in tree.findall(".//{DAV:}response"):
            href_el = next(iter(resp.findall(".//{DAV:}href")), None)
            if href_el is not None:
                out.append(resp)

    except etree.XMLSyntaxError as ex:
        raise RemoteServerError("Server returned unparseable XML", cause=ex) from ex

    return out
