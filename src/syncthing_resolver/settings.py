# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
Connection settings for the Syncthing REST API.

Settings are loaded once at startup and written back only when the
user explicitly changes them.  The on-disk layout is::

    {
        "api_key": "..." or null,
        "url": {"protocol": "http", "ip_address": "localhost", "port": 8384}
    }
"""

__all__ = [
    "ConnectionSettings",
    "ServerURL",
    "SettingsError",
    "load_settings",
    "save_settings",
]

import json

import attr
from attr.validators import (
    in_,
    instance_of,
    optional,
)
from eliot import (
    start_action,
)
from hyperlink import (
    DecodedURL,
)

from .schema import (
    SchemaError,
    decode,
    encode,
    field,
    nested,
)

SETTINGS_FILENAME = u"settings.json"

DEFAULT_PROTOCOL = u"http"
DEFAULT_IP_ADDRESS = u"localhost"
DEFAULT_PORT = 8384

LOOPBACK_NAME = u"localhost"
LOOPBACK_ADDRESS = u"127.0.0.1"


class SettingsError(Exception):
    """
    The persisted settings could not be read.
    """


def _valid_port(inst, attribute, value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(
            "'{}' must be an integer (got {!r})".format(attribute.name, value)
        )
    if not 0 < value < 65536:
        raise ValueError(
            "'{}' must be between 1 and 65535 (got {!r})".format(attribute.name, value)
        )


@attr.s(frozen=True)
class ServerURL(object):
    """
    Where the daemon's REST API listens.
    """
    protocol = field("protocol", validator=in_((u"http", u"https")), default=DEFAULT_PROTOCOL)
    ip_address = field("ip_address", validator=instance_of(str), default=DEFAULT_IP_ADDRESS)
    port = field("port", validator=_valid_port, default=DEFAULT_PORT)


@attr.s(frozen=True)
class ConnectionSettings(object):
    """
    Everything needed to talk to one Syncthing daemon.

    :ivar unicode api_key: the value sent as ``X-API-Key`` (or None if the
        user has not configured one yet).

    :ivar ServerURL url: the location of the REST API.
    """
    api_key = field("api_key", validator=optional(instance_of(str)), default=None)
    url = nested("url", ServerURL, default=attr.Factory(ServerURL))

    def base_url(self, mobile=False):
        """
        :param bool mobile: True when running on a mobile platform, whose
            network stack may not resolve ``localhost``.

        :returns DecodedURL: the root of the REST API.
        """
        host = self.url.ip_address
        if mobile and host == LOOPBACK_NAME:
            host = LOOPBACK_ADDRESS
        return DecodedURL.from_text(u"{}://{}:{}/".format(
            self.url.protocol,
            host,
            self.url.port,
        ))

    def to_json(self):
        """
        :return: a representation of these settings suitable for JSON encoding.
        """
        return encode(self)

    def evolve(self, api_key=attr.NOTHING, protocol=None, ip_address=None, port=None):
        """
        :returns ConnectionSettings: a copy with the given values replaced.
            ``api_key`` may be set to None explicitly.
        """
        url_changes = {
            name: value
            for name, value in [
                ("protocol", protocol),
                ("ip_address", ip_address),
                ("port", port),
            ]
            if value is not None
        }
        changes = {"url": attr.evolve(self.url, **url_changes)}
        if api_key is not attr.NOTHING:
            changes["api_key"] = api_key
        return attr.evolve(self, **changes)


def load_settings(basedir):
    """
    Load settings from ``basedir``.  Missing settings produce the
    defaults; they are not written until :py:`save_settings` is called.

    :param FilePath basedir: the configuration directory.

    :raises SettingsError: if the file exists but is not valid.

    :returns ConnectionSettings: the loaded settings.
    """
    path = basedir.child(SETTINGS_FILENAME)
    with start_action(action_type=u"settings:load", path=path.path):
        if not path.exists():
            return ConnectionSettings()
        try:
            with path.open("rb") as f:
                raw = json.loads(f.read().decode("utf8"))
        except ValueError as e:
            raise SettingsError(
                u"{} is not valid JSON: {}".format(path.path, e)
            )
        try:
            return decode(ConnectionSettings, raw)
        except SchemaError as e:
            raise SettingsError(
                u"{} is not valid:\n{}".format(path.path, e)
            )


def save_settings(basedir, settings):
    """
    Write ``settings`` into ``basedir``, creating it if needed.

    :param FilePath basedir: the configuration directory.

    :param ConnectionSettings settings: the settings to persist.
    """
    path = basedir.child(SETTINGS_FILENAME)
    with start_action(action_type=u"settings:save", path=path.path):
        if not basedir.exists():
            basedir.makedirs()
        tmp = path.temporarySibling(".tmp")
        with tmp.open("wb") as f:
            f.write(json.dumps(settings.to_json(), indent=4).encode("utf8"))
        tmp.moveTo(path)
