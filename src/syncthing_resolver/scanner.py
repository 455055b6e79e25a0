# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
Discover groups of conflicting files.

When Syncthing cannot reconcile two versions of a file it keeps one of
them under a name carrying a conflict marker::

    <stem>.sync-conflict-<YYYYMMDD>-<HHMMSS>-<DEVICE><ext>

where ``<DEVICE>`` is the start of the ID of the device that produced the
losing version. A conflict of a conflict carries one marker per
generation.
"""

import posixpath
import re
from datetime import (
    datetime,
)

import attr
from attr.validators import (
    deep_iterable,
    instance_of,
    optional,
)
from eliot import (
    Message,
)

from .filestore import (
    FileRef,
)
from .util.eliotutil import (
    log_inline_callbacks,
)

CONFLICT_MARKER = u".sync-conflict-"

_CONFLICT_NAME = re.compile(
    r"^(?P<stem>.+)"
    r"\.sync-conflict-"
    r"(?P<date>[0-9]{8})-(?P<time>[0-9]{6})-"
    r"(?P<device>[A-Z0-9]+)"
    r"(?P<ext>\.[^.]*)?$"
)


@attr.s(frozen=True)
class ConflictMarker(object):
    """
    What a conflict file name says about it.

    :ivar unicode original_name: the name with this (outermost) marker
        removed.
    :ivar datetime timestamp: when the conflict was detected (local time
        of the detecting device, no timezone).
    :ivar unicode device_short_id: the prefix of the ID of the device
        whose change lost.
    """
    original_name = attr.ib(validator=instance_of(str))
    timestamp = attr.ib(validator=instance_of(datetime))
    device_short_id = attr.ib(validator=instance_of(str))


def parse_conflict_name(name):
    """
    :param unicode name: a file name (not a path).

    :returns ConflictMarker: the outermost marker in ``name``, or None if
        it has none.
    """
    if CONFLICT_MARKER not in name:
        return None
    match = _CONFLICT_NAME.match(name)
    if match is None:
        return None
    try:
        timestamp = datetime.strptime(
            match.group("date") + match.group("time"),
            "%Y%m%d%H%M%S",
        )
    except ValueError:
        return None
    return ConflictMarker(
        original_name=match.group("stem") + (match.group("ext") or u""),
        timestamp=timestamp,
        device_short_id=match.group("device"),
    )


def original_path_for(path):
    """
    :param unicode path: a slash-separated path.

    :returns unicode: ``path`` with every conflict marker removed from its
        final segment.
    """
    directory, name = posixpath.split(path)
    marker = parse_conflict_name(name)
    while marker is not None:
        name = marker.original_name
        marker = parse_conflict_name(name)
    return posixpath.join(directory, name)


def is_conflict_path(path):
    return original_path_for(path) != path


def _conflict_order(file_ref):
    return (file_ref.mtime_ns, file_ref.path)


@attr.s(frozen=True)
class ConflictGroup(object):
    """
    An original file together with its conflicting variants.

    :ivar unicode key: the path of the original, whether or not it still
        exists.
    :ivar FileRef original: the unmarked file, or None if it has been
        deleted.
    :ivar tuple[FileRef] conflicts: the variants, oldest first (ties broken
        by path).
    """
    key = attr.ib(validator=instance_of(str))
    original = attr.ib(validator=optional(instance_of(FileRef)))
    conflicts = attr.ib(
        converter=lambda files: tuple(sorted(files, key=_conflict_order)),
        validator=deep_iterable(instance_of(FileRef)),
    )

    @property
    def is_conflicted(self):
        return len(self.conflicts) > 0

    @property
    def files(self):
        """
        Every file of the group, original first.
        """
        if self.original is None:
            return self.conflicts
        return (self.original,) + self.conflicts

    def contains(self, path):
        return any(f.path == path for f in self.files)

    def to_json(self):
        return {
            "key": self.key,
            "original": None if self.original is None else self.original.to_json(),
            "conflicts": [f.to_json() for f in self.conflicts],
        }


def scan_groups(files):
    """
    Partition ``files`` into groups by original path. Grouping is per
    directory: ``a/x.md`` and ``b/x.md`` never share a group.

    :param files: FileRef instances with unique paths.

    :returns list[ConflictGroup]: one group per original path, sorted by
        key. Groups without conflicts are included.
    """
    originals = {}
    conflicts = {}
    for file_ref in files:
        key = original_path_for(file_ref.path)
        if key == file_ref.path:
            originals[key] = file_ref
        else:
            conflicts.setdefault(key, []).append(file_ref)

    return [
        ConflictGroup(
            key=key,
            original=originals.get(key),
            conflicts=conflicts.get(key, ()),
        )
        for key in sorted(set(originals) | set(conflicts))
    ]


@log_inline_callbacks(u"scanner:find-conflict-groups")
def find_conflict_groups(store):
    """
    :param IFileStore store: the files to look at.

    :returns Deferred[list[ConflictGroup]]: the groups of the store's
        current contents that have at least one conflict.
    """
    files = yield store.list_files()
    groups = [
        group
        for group in scan_groups(files)
        if group.is_conflicted
    ]
    Message.log(
        message_type=u"scanner:conflict-groups",
        files=len(files),
        keys=[group.key for group in groups],
    )
    return groups
