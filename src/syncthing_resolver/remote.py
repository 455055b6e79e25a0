# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
A client for the Syncthing REST API.

See https://docs.syncthing.net/dev/rest.html
"""

import json
import sys

import attr
from eliot import (
    Message,
    start_action,
)
from eliot.twisted import (
    inline_callbacks,
)
from twisted.web.client import (
    Agent,
)
from treq.client import (
    HTTPClient,
)
from treq.testing import (
    StubTreq,
)

from .common import (
    SyncFailure,
    TRANSPORT,
    VALIDATION,
)
from .schema import (
    Configuration,
    Device,
    Folder,
    Ping,
    SchemaError,
    SystemStatus,
    decode,
    decode_list,
)
from .settings import (
    ConnectionSettings,
)

DEFAULT_TIMEOUT = 30.0

MOBILE_PLATFORMS = ("android", "ios")


def is_mobile_platform(platform=None):
    """
    :returns bool: True when running on a mobile operating system.
    """
    if platform is None:
        platform = sys.platform
    return platform in MOBILE_PLATFORMS


def url_to_bytes(url):
    """
    Serialize a ``DecodedURL`` to an ASCII-only bytes string.  This result is
    suitable for use as an HTTP request path

    :param DecodedURL url: The URL to encode.

    :return bytes: The encoded URL.
    """
    return url.to_uri().to_text().encode("ascii")


def _decode_body(schema, body, many=False):
    """
    Parse and validate a response body.

    :raises SyncFailure: of kind ``validation`` carrying every issue.
    """
    try:
        value = json.loads(body.decode("utf8"))
    except ValueError as e:
        raise SyncFailure(
            kind=VALIDATION,
            message=u"Response is not valid JSON: {}".format(e),
        )
    try:
        if many:
            return decode_list(schema, value)
        return decode(schema, value)
    except SchemaError as e:
        Message.log(
            message_type=u"remote:validation-failed",
            issues=e.issues,
        )
        raise SyncFailure(kind=VALIDATION, message=u"\n".join(e.issues))


@attr.s
class SyncthingRemoteClient(object):
    """
    An object that knows how to call a particular Syncthing daemon's
    REST API.

    :ivar HTTPClient http_client: The client to use to make HTTP requests.

    :ivar ConnectionSettings settings: where the daemon is and how to
        authenticate; replaced only via :py:`update_settings`.

    :ivar reactor: used to time out requests.

    :ivar float timeout: seconds to wait for a response.

    :ivar bool mobile: substitute the numeric loopback address for
        ``localhost`` (see :py:`is_mobile_platform`).
    """

    # treq should provide an interface but it doesn't ...  HTTPClient and
    # StubTreq are both the same kind of thing.  HTTPClient is the one that
    # does real networking, StubTreq is the one that operates in-memory on a
    # local resource object.
    http_client = attr.ib(validator=attr.validators.instance_of((HTTPClient, StubTreq)))
    settings = attr.ib(validator=attr.validators.instance_of(ConnectionSettings))
    reactor = attr.ib()
    timeout = attr.ib(default=DEFAULT_TIMEOUT, validator=attr.validators.instance_of((int, float)))
    mobile = attr.ib(default=attr.Factory(is_mobile_platform), validator=attr.validators.instance_of(bool))

    def update_settings(self, settings):
        """
        Use new connection settings for all subsequent requests.

        :param ConnectionSettings settings: the replacement settings.
        """
        if not isinstance(settings, ConnectionSettings):
            raise TypeError("settings must be ConnectionSettings, not {!r}".format(settings))
        self.settings = settings

    def endpoint_url(self, *segments):
        """
        :returns DecodedURL: the URL of the given REST endpoint.
        """
        return self.settings.base_url(mobile=self.mobile).child(*segments)

    @inline_callbacks
    def ping(self):
        """
        Check that the daemon is reachable.

        :returns Deferred[unicode]: fires with ``"pong"``.
        """
        body = yield self._get(u"rest", u"system", u"ping")
        return _decode_body(Ping, body).ping

    @inline_callbacks
    def get_configuration(self):
        """
        :returns Deferred[Configuration]: the daemon's configuration.
        """
        body = yield self._get(u"rest", u"config")
        return _decode_body(Configuration, body)

    @inline_callbacks
    def get_devices(self):
        """
        :returns Deferred[list[Device]]: all configured devices.
        """
        body = yield self._get(u"rest", u"config", u"devices")
        return _decode_body(Device, body, many=True)

    @inline_callbacks
    def get_all_folders(self):
        """
        :returns Deferred[list[Folder]]: all configured folders.
        """
        body = yield self._get(u"rest", u"config", u"folders")
        return _decode_body(Folder, body, many=True)

    @inline_callbacks
    def get_folders_for_device(self, device):
        """
        :param Device device: the device to look for.

        :returns Deferred[list[Folder]]: the folders shared with ``device``.
        """
        folders = yield self.get_all_folders()
        return [
            folder
            for folder in folders
            if folder.is_shared_with(device.device_id)
        ]

    @inline_callbacks
    def get_system_status(self):
        """
        :returns Deferred[SystemStatus]: the daemon's status, including
            the ID of the device it runs on.
        """
        body = yield self._get(u"rest", u"system", u"status")
        return _decode_body(SystemStatus, body)

    @inline_callbacks
    def shutdown(self):
        """
        Ask the daemon to exit.

        :returns Deferred[None]: fires once the daemon accepted the request.
        """
        yield self._request("POST", self.endpoint_url(u"rest", u"system", u"shutdown"))

    def _get(self, *segments):
        return self._request("GET", self.endpoint_url(*segments))

    @inline_callbacks
    def _request(self, method, url):
        """
        :param str method: GET, POST etc http verb

        :param DecodedURL url: the url to request

        :raises SyncFailure: of kind ``transport`` for any network error,
            timeout or non-2xx response.

        :returns Deferred[bytes]: the response body.
        """
        with start_action(
            action_type=u"remote:request",
            method=method,
            url=url.to_text(),
        ) as action:
            headers = {
                b"X-API-Key": (self.settings.api_key or u"").encode("utf8"),
                b"Accept": b"application/json",
            }
            try:
                response = yield self.http_client.request(
                    method,
                    url_to_bytes(url),
                    headers=headers,
                    timeout=self.timeout,
                    reactor=self.reactor,
                )
                # the request timeout only covers the response headers
                body = yield response.content().addTimeout(self.timeout, self.reactor)
            except Exception as e:
                # a timed-out request fails with an exception that has no text
                raise SyncFailure(
                    kind=TRANSPORT,
                    message=u"Can't reach the Syncthing daemon at {}: {}".format(
                        self.settings.base_url(mobile=self.mobile).to_text(),
                        str(e) or e.__class__.__name__,
                    ),
                )
            action.add_success_fields(code=response.code)
            if not 200 <= response.code < 300:
                raise SyncFailure(
                    kind=TRANSPORT,
                    message=body.decode("utf8", "replace"),
                    http_code=response.code,
                )
            return body


def create_http_client(reactor):
    """
    :param reactor: Twisted reactor

    :returns: a Treq HTTPClient which makes real network requests
    """
    return HTTPClient(agent=Agent(reactor))


def create_remote_client(reactor, settings, http_client=None, timeout=DEFAULT_TIMEOUT):
    """
    Create a new SyncthingRemoteClient speaking to the daemon described by
    ``settings``.

    :param ConnectionSettings settings: the connection settings.

    :param http_client: the client used to make all requests (a real
        one is created when None).

    :returns SyncthingRemoteClient: the client.
    """
    if http_client is None:
        http_client = create_http_client(reactor)
    return SyncthingRemoteClient(
        http_client=http_client,
        settings=settings,
        reactor=reactor,
        timeout=timeout,
    )
