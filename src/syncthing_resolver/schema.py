# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
Declarative decoding of JSON documents into attrs classes, and the
Syncthing REST API entities described that way.

A schema is an ``attr.s`` class whose attributes are declared with
:py:`field` or :py:`nested`.  :py:`decode` walks a parsed JSON value,
checks every declared field with the attribute's own validator and
either returns a fully-constructed instance or raises
:py:`SchemaError` listing *every* problem found.  A partially
populated object is never returned.
"""

import attr
from attr.validators import (
    deep_iterable,
    in_,
    instance_of,
)

_JSON_NAME = "schema:json-name"
_NESTED = "schema:nested"
_MANY = "schema:many"


@attr.s(auto_exc=True, str=False)
class SchemaError(ValueError):
    """
    A JSON value did not match a schema.

    :ivar list[unicode] issues: one message per problem, each prefixed
        with the location of the offending value.
    """
    issues = attr.ib(validator=instance_of(list))

    def __str__(self):
        return u"\n".join(self.issues)


def field(json_name, validator=None, default=attr.NOTHING, converter=None):
    """
    Declare an attribute read from the JSON key ``json_name``.

    An attribute without a default is required.
    """
    return attr.ib(
        validator=validator,
        default=default,
        converter=converter,
        metadata={_JSON_NAME: json_name},
    )


def nested(json_name, schema, many=False, default=attr.NOTHING):
    """
    Declare an attribute holding another schema (or, with ``many``, a
    list of them) read from the JSON key ``json_name``.
    """
    if many:
        validator = deep_iterable(
            member_validator=instance_of(schema),
            iterable_validator=instance_of(tuple),
        )
        converter = tuple
    else:
        validator = instance_of(schema)
        converter = None
    return attr.ib(
        validator=validator,
        default=default,
        converter=converter,
        metadata={
            _JSON_NAME: json_name,
            _NESTED: schema,
            _MANY: many,
        },
    )


def string_list(json_name, default=attr.NOTHING):
    """
    Declare an attribute holding a JSON list of strings.
    """
    return field(
        json_name,
        validator=deep_iterable(
            member_validator=instance_of(str),
            iterable_validator=instance_of((list, tuple)),
        ),
        default=default,
        converter=tuple,
    )


def _type_name(value):
    if value is None:
        return u"null"
    if isinstance(value, bool):
        return u"boolean"
    if isinstance(value, (int, float)):
        return u"number"
    if isinstance(value, str):
        return u"string"
    if isinstance(value, list):
        return u"array"
    if isinstance(value, dict):
        return u"object"
    return type(value).__name__


def _location(where, name):
    if not where:
        return name
    return u"{}.{}".format(where, name)


def _describe(location, error):
    # attrs validators put a readable message first in ``args``
    message = error.args[0] if error.args else u"{}".format(error)
    return u"{}: {}".format(location or u"<root>", message)


def _decode_object(schema, value, where, issues):
    if not isinstance(value, dict):
        issues.append(u"{}: expected an object, got {}".format(
            where or u"<root>",
            _type_name(value),
        ))
        return None

    issues_before = len(issues)
    kwargs = {}
    for attribute in attr.fields(schema):
        json_name = attribute.metadata.get(_JSON_NAME, attribute.name)
        location = _location(where, json_name)
        init_name = attribute.name.lstrip("_")

        if json_name not in value:
            if attribute.default is attr.NOTHING:
                issues.append(u"{}: missing required field".format(location))
            continue

        raw = value[json_name]
        inner = attribute.metadata.get(_NESTED)
        if inner is None:
            if attribute.validator is not None:
                try:
                    attribute.validator(None, attribute, raw)
                except (TypeError, ValueError) as e:
                    issues.append(_describe(location, e))
                    continue
            kwargs[init_name] = raw
        elif attribute.metadata.get(_MANY):
            if not isinstance(raw, list):
                issues.append(u"{}: expected an array, got {}".format(
                    location,
                    _type_name(raw),
                ))
                continue
            kwargs[init_name] = [
                _decode_object(inner, item, u"{}[{}]".format(location, index), issues)
                for index, item in enumerate(raw)
            ]
        else:
            kwargs[init_name] = _decode_object(inner, raw, location, issues)

    if len(issues) != issues_before:
        return None
    return schema(**kwargs)


def decode(schema, value):
    """
    Decode a parsed JSON value according to ``schema``.

    :param type schema: an attrs class declared with :py:`field` and
        :py:`nested`.

    :param value: the result of ``json.loads``.

    :raises SchemaError: listing every mismatch, if there are any.

    :returns: an instance of ``schema``.
    """
    issues = []
    result = _decode_object(schema, value, u"", issues)
    if issues:
        raise SchemaError(issues)
    return result


def decode_list(schema, value):
    """
    Decode a parsed JSON array whose elements all follow ``schema``.

    :raises SchemaError: listing every mismatch, if there are any.

    :returns list: instances of ``schema``.
    """
    if not isinstance(value, list):
        raise SchemaError([u"<root>: expected an array, got {}".format(_type_name(value))])
    issues = []
    result = [
        _decode_object(schema, item, u"[{}]".format(index), issues)
        for index, item in enumerate(value)
    ]
    if issues:
        raise SchemaError(issues)
    return result


def encode(instance):
    """
    Turn a schema instance back into a JSON-compatible value, using the
    declared JSON names.
    """
    result = {}
    for attribute in attr.fields(type(instance)):
        json_name = attribute.metadata.get(_JSON_NAME, attribute.name)
        value = getattr(instance, attribute.name)
        if attribute.metadata.get(_NESTED) is not None:
            if attribute.metadata.get(_MANY):
                value = [encode(item) for item in value]
            else:
                value = encode(value)
        elif isinstance(value, tuple):
            value = list(value)
        result[json_name] = value
    return result


FOLDER_TYPES = (
    u"sendreceive",
    u"sendonly",
    u"receiveonly",
    u"receiveencrypted",
)


@attr.s(frozen=True)
class FolderDevice(object):
    """
    A device a folder is shared with.
    """
    device_id = field("deviceID", validator=instance_of(str))
    introduced_by = field("introducedBy", validator=instance_of(str), default=u"")


@attr.s(frozen=True)
class Folder(object):
    """
    A folder declared in the daemon's configuration.
    """
    folder_id = field("id", validator=instance_of(str))
    label = field("label", validator=instance_of(str))
    path = field("path", validator=instance_of(str))
    type = field("type", validator=in_(FOLDER_TYPES))
    devices = nested("devices", FolderDevice, many=True)
    paused = field("paused", validator=instance_of(bool), default=False)

    def is_shared_with(self, device_id):
        """
        :returns bool: True if ``device_id`` is a member of this folder.
        """
        return any(
            member.device_id == device_id
            for member in self.devices
        )


@attr.s(frozen=True)
class Device(object):
    """
    A device declared in the daemon's configuration.
    """
    device_id = field("deviceID", validator=instance_of(str))
    name = field("name", validator=instance_of(str))
    addresses = string_list("addresses", default=())
    paused = field("paused", validator=instance_of(bool), default=False)

    @property
    def short_id(self):
        """
        The first seven characters of the device ID; this is what Syncthing
        writes into conflict file names.
        """
        return self.device_id.replace(u"-", u"")[:7]

    def matches_short_id(self, short_id):
        """
        :returns bool: True if ``short_id`` (as found in a conflict marker)
            identifies this device.
        """
        return bool(short_id) and self.device_id.replace(u"-", u"").startswith(short_id)


@attr.s(frozen=True)
class Configuration(object):
    """
    The daemon's declared folders and devices.
    """
    version = field("version", validator=instance_of(int))
    folders = nested("folders", Folder, many=True)
    devices = nested("devices", Device, many=True)


@attr.s(frozen=True)
class SystemStatus(object):
    """
    The subset of ``/rest/system/status`` we use; ``my_id`` is the ID of
    the device the daemon runs on.
    """
    my_id = field("myID", validator=instance_of(str))
    uptime = field("uptime", validator=instance_of(int))
    start_time = field("startTime", validator=instance_of(str), default=u"")


@attr.s(frozen=True)
class Ping(object):
    """
    The answer to ``/rest/system/ping``.
    """
    ping = field("ping", validator=in_((u"pong",)))
