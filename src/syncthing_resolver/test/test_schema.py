# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
Tests for ``syncthing_resolver.schema``.
"""

from testtools.matchers import (
    Contains,
    Equals,
    HasLength,
    MatchesAll,
    MatchesListwise,
    MatchesStructure,
    StartsWith,
)

from ..schema import (
    Configuration,
    Device,
    Folder,
    FolderDevice,
    Ping,
    SchemaError,
    SystemStatus,
    decode,
    decode_list,
    encode,
)
from ..testing.web import (
    LOCAL_DEVICE_ID,
    REMOTE_DEVICE_ID,
    default_configuration,
)
from .common import (
    SyncTestCase,
)


def _folder(**overrides):
    folder = {
        "id": "notes-xyzzy",
        "label": "Notes",
        "path": "/home/alice/notes",
        "type": "sendreceive",
        "devices": [
            {"deviceID": LOCAL_DEVICE_ID},
            {"deviceID": REMOTE_DEVICE_ID, "introducedBy": ""},
        ],
    }
    folder.update(overrides)
    return folder


class DecodeTests(SyncTestCase):
    """
    Tests for ``decode`` and ``decode_list``.
    """

    def test_folder(self):
        """
        A well-formed folder decodes to a ``Folder`` with its devices;
        fields we don't know about are ignored.
        """
        folder = decode(Folder, _folder(rescanIntervalS=3600))
        self.assertThat(
            folder,
            MatchesStructure(
                folder_id=Equals(u"notes-xyzzy"),
                label=Equals(u"Notes"),
                type=Equals(u"sendreceive"),
                paused=Equals(False),
                devices=Equals((
                    FolderDevice(device_id=LOCAL_DEVICE_ID),
                    FolderDevice(device_id=REMOTE_DEVICE_ID),
                )),
            ),
        )

    def test_missing_required_field(self):
        """
        A missing required field is reported by its JSON name and nothing is
        returned.
        """
        raw = _folder()
        del raw["id"]
        with self.assertRaises(SchemaError) as ctx:
            decode(Folder, raw)
        self.assertThat(
            ctx.exception.issues,
            Equals([u"id: missing required field"]),
        )

    def test_every_issue_reported(self):
        """
        All problems are reported together, including those inside nested
        values, each prefixed with where it was found.
        """
        raw = _folder(
            label=3,
            type="bogus",
            devices=[{"deviceID": LOCAL_DEVICE_ID}, {"introducedBy": ""}],
        )
        with self.assertRaises(SchemaError) as ctx:
            decode(Folder, raw)
        self.assertThat(
            ctx.exception.issues,
            MatchesListwise([
                StartsWith(u"label: 'label' must be"),
                MatchesAll(StartsWith(u"type: "), Contains(u"bogus")),
                Equals(u"devices[1].deviceID: missing required field"),
            ]),
        )

    def test_error_str(self):
        """
        ``str(SchemaError)`` is every issue, one per line.
        """
        self.assertThat(
            str(SchemaError([u"a: one", u"b: two"])),
            Equals(u"a: one\nb: two"),
        )

    def test_not_an_object(self):
        """
        A value that is not a JSON object can't be decoded as one.
        """
        with self.assertRaises(SchemaError) as ctx:
            decode(Ping, ["pong"])
        self.assertThat(
            ctx.exception.issues,
            Equals([u"<root>: expected an object, got array"]),
        )

    def test_nested_not_a_list(self):
        """
        A field declared as a list of objects must be a JSON array.
        """
        with self.assertRaises(SchemaError) as ctx:
            decode(Folder, _folder(devices={"deviceID": LOCAL_DEVICE_ID}))
        self.assertThat(
            ctx.exception.issues,
            Equals([u"devices: expected an array, got object"]),
        )

    def test_wrong_literal(self):
        """
        ``Ping`` only accepts ``"pong"``.
        """
        with self.assertRaises(SchemaError):
            decode(Ping, {"ping": "ping"})
        self.assertThat(decode(Ping, {"ping": "pong"}).ping, Equals(u"pong"))

    def test_decode_list(self):
        """
        ``decode_list`` decodes every element and locates problems by index.
        """
        devices = default_configuration()["devices"]
        self.assertThat(decode_list(Device, devices), HasLength(2))

        with self.assertRaises(SchemaError) as ctx:
            decode_list(Device, [devices[0], {"deviceID": REMOTE_DEVICE_ID}])
        self.assertThat(
            ctx.exception.issues,
            Equals([u"[1].name: missing required field"]),
        )

    def test_decode_list_not_a_list(self):
        with self.assertRaises(SchemaError) as ctx:
            decode_list(Device, {})
        self.assertThat(
            ctx.exception.issues,
            Equals([u"<root>: expected an array, got object"]),
        )

    def test_configuration(self):
        """
        The complete configuration document decodes.
        """
        config = decode(Configuration, default_configuration())
        self.assertThat(
            config,
            MatchesStructure(
                version=Equals(37),
                folders=HasLength(2),
                devices=HasLength(2),
            ),
        )

    def test_system_status(self):
        status = decode(SystemStatus, {"myID": LOCAL_DEVICE_ID, "uptime": 5})
        self.assertThat(
            status,
            MatchesStructure(
                my_id=Equals(LOCAL_DEVICE_ID),
                uptime=Equals(5),
                start_time=Equals(u""),
            ),
        )

    def test_encode(self):
        """
        ``encode`` uses the JSON names and turns tuples into lists.
        """
        device = Device(
            device_id=REMOTE_DEVICE_ID,
            name=u"phone",
            addresses=[u"dynamic"],
        )
        self.assertThat(
            encode(device),
            Equals({
                "deviceID": REMOTE_DEVICE_ID,
                "name": u"phone",
                "addresses": [u"dynamic"],
                "paused": False,
            }),
        )


class EntityTests(SyncTestCase):
    """
    Tests for the behaviour of the decoded entities.
    """

    def test_short_id(self):
        """
        A device's short ID is the first seven characters of its ID, which is
        what conflict file names carry.
        """
        device = Device(device_id=REMOTE_DEVICE_ID, name=u"phone")
        self.assertThat(device.short_id, Equals(u"P56IOI7"))
        self.assertThat(device.matches_short_id(u"P56IOI7"), Equals(True))
        self.assertThat(device.matches_short_id(u"MFZWI3D"), Equals(False))
        self.assertThat(device.matches_short_id(u""), Equals(False))

    def test_is_shared_with(self):
        folder = decode(Folder, _folder(devices=[{"deviceID": LOCAL_DEVICE_ID}]))
        self.assertThat(folder.is_shared_with(LOCAL_DEVICE_ID), Equals(True))
        self.assertThat(folder.is_shared_with(REMOTE_DEVICE_ID), Equals(False))
