# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
Common fixtures to let the test suite focus on application logic.
"""

import os

import attr
from fixtures import (
    Fixture,
)

from ..filestore import (
    LocalFileStore,
)
from ..util.file import (
    seconds_to_ns,
)


@attr.s
class SyncthingFolder(Fixture):
    """
    A directory on disk laid out like a Syncthing folder.

    :ivar FilePath path: the folder; created by the fixture.
    """
    path = attr.ib()

    @property
    def store(self):
        return LocalFileStore(self.path)

    def add(self, relpath, content, mtime=None):
        """
        Create a file.

        :param unicode relpath: slash-separated path inside the folder.
        :param unicode content: written as UTF-8.
        :param float mtime: modification time in seconds, if given.

        :returns int: the file's modification time in nanoseconds.
        """
        child = self.path.preauthChild(relpath)
        if not child.parent().exists():
            child.parent().makedirs()
        child.setContent(content.encode("utf8"))
        if mtime is not None:
            mtime_ns = seconds_to_ns(mtime)
            os.utime(child.path, ns=(mtime_ns, mtime_ns))
        return os.stat(child.path).st_mtime_ns

    def _setUp(self):
        self.path.makedirs()
        self.path.child(u".stfolder").makedirs()
