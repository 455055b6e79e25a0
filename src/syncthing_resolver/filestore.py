# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
The file store conflict resolution acts on.

Paths are always slash-separated and relative to the root of the store
(a Syncthing folder).
"""

import posixpath

import attr
from attr.validators import (
    instance_of,
)
from twisted.python.filepath import (
    FilePath,
    InsecurePath,
    LinkError,
)
from zope.interface import (
    Interface,
    implementer,
)

from .common import (
    FILESYSTEM,
    SyncFailure,
)
from .util.eliotutil import (
    log_call_deferred,
)
from .util.file import (
    get_file_stat,
)

# Syncthing's own bookkeeping, never user content
IGNORED_NAMES = (u".stfolder", u".stversions", u".stignore")


def _path_fields(store, file_ref):
    return {u"path": file_ref.path}


def _rename_fields(store, file_ref, new_path):
    return {u"source": file_ref.path, u"target": new_path}


@attr.s(frozen=True)
class FileRef(object):
    """
    A snapshot of one stored file. A changed file gets a new FileRef.

    :ivar unicode path: unique, slash-separated, relative to the store root.
    :ivar unicode name: the final segment of ``path``.
    :ivar int size: in bytes.
    :ivar int mtime_ns: last modification time in nanoseconds.
    """
    path = attr.ib(validator=instance_of(str))
    name = attr.ib(validator=instance_of(str))
    size = attr.ib(validator=instance_of(int))
    mtime_ns = attr.ib(validator=instance_of(int))

    @classmethod
    def at(cls, path, size, mtime_ns):
        return cls(
            path=path,
            name=posixpath.basename(path),
            size=size,
            mtime_ns=mtime_ns,
        )

    def to_json(self):
        return {
            "path": self.path,
            "name": self.name,
            "size": self.size,
            "mtime_ns": self.mtime_ns,
        }


class IFileStore(Interface):
    """
    An opaque store of text blobs keyed by path.

    Every method returns a Deferred; failures are ``SyncFailure`` of kind
    ``filesystem``.
    """

    def list_files():
        """
        :returns Deferred[list[FileRef]]: every file currently stored.
        """

    def read(file_ref):
        """
        :returns Deferred[unicode]: the content of ``file_ref``.
        """

    def delete(file_ref):
        """
        Remove ``file_ref`` from the store.

        :returns Deferred[None]: fires when the file is gone.
        """

    def rename(file_ref, new_path):
        """
        Move ``file_ref`` to ``new_path``, which must not exist.

        :returns Deferred[FileRef]: the file at its new location.
        """


@implementer(IFileStore)
@attr.s
class LocalFileStore(object):
    """
    Files in a local directory.
    """

    root = attr.ib(validator=instance_of(FilePath))

    def _child(self, path):
        try:
            return self.root.preauthChild(path)
        except InsecurePath:
            raise SyncFailure(
                kind=FILESYSTEM,
                message=u"{} is outside of {}".format(path, self.root.path),
                paths=[path],
            )

    def _ref(self, child):
        info = get_file_stat(child)
        return FileRef.at(
            u"/".join(child.segmentsFrom(self.root)),
            info.size,
            info.mtime_ns,
        )

    @log_call_deferred(u"filestore:list-files")
    def list_files(self):
        if not self.root.isdir():
            raise SyncFailure(
                kind=FILESYSTEM,
                message=u"{} is not a directory".format(self.root.path),
            )

        def descend(path):
            return path.basename() not in IGNORED_NAMES

        try:
            files = [
                self._ref(child)
                for child in self.root.walk(descend=descend)
                if child != self.root
                and child.basename() not in IGNORED_NAMES
                and get_file_stat(child) is not None
            ]
        except (OSError, LinkError) as e:
            # LinkError is a symlink loop
            raise SyncFailure.from_exception(
                FILESYSTEM, getattr(e, "strerror", None) or e,
                prefix=u"Can't list {}".format(self.root.path),
            )
        return sorted(files, key=lambda f: f.path)

    @log_call_deferred(u"filestore:read", fields=_path_fields)
    def read(self, file_ref):
        try:
            content = self._child(file_ref.path).getContent()
        except (IOError, OSError) as e:
            raise SyncFailure.from_exception(
                FILESYSTEM, e.strerror or e,
                prefix=u"Can't read {}".format(file_ref.path),
                paths=[file_ref.path],
            )
        return content.decode("utf8", "replace")

    @log_call_deferred(u"filestore:delete", fields=_path_fields)
    def delete(self, file_ref):
        try:
            self._child(file_ref.path).remove()
        except (IOError, OSError) as e:
            raise SyncFailure.from_exception(
                FILESYSTEM, e.strerror or e,
                prefix=u"Can't delete {}".format(file_ref.path),
                paths=[file_ref.path],
            )

    @log_call_deferred(u"filestore:rename", fields=_rename_fields)
    def rename(self, file_ref, new_path):
        source = self._child(file_ref.path)
        target = self._child(new_path)
        if target.exists():
            raise SyncFailure(
                kind=FILESYSTEM,
                message=u"Can't rename {} to {}: target exists".format(
                    file_ref.path,
                    new_path,
                ),
                paths=[file_ref.path, new_path],
            )
        try:
            source.moveTo(target)
        except (IOError, OSError) as e:
            raise SyncFailure.from_exception(
                FILESYSTEM, e.strerror or e,
                prefix=u"Can't rename {} to {}".format(file_ref.path, new_path),
                paths=[file_ref.path, new_path],
            )
        return self._ref(target)


@implementer(IFileStore)
class InMemoryFileStore(object):
    """
    Remembers files and the changes made to them. Generally for testing.

    :ivar list actions: ``("delete", path)`` and ``("rename", path,
        new_path)`` for every successful mutation, in order.
    """

    def __init__(self):
        self.actions = []
        self._files = {}
        self._failures = {}

    def add(self, path, content, mtime_ns=0):
        """
        Store ``content`` at ``path``, replacing anything already there.

        :returns FileRef: the stored file.
        """
        self._files[path] = (content, mtime_ns)
        return self._ref(path)

    def fail_next(self, operation, message=u"Permission denied"):
        """
        Make the next call of ``operation`` (one of "list_files", "read",
        "delete", "rename") fail.
        """
        self._failures[operation] = message

    def paths(self):
        return sorted(self._files)

    def _ref(self, path):
        content, mtime_ns = self._files[path]
        return FileRef.at(path, len(content.encode("utf8")), mtime_ns)

    def _check(self, operation, *paths):
        message = self._failures.pop(operation, None)
        if message is not None:
            raise SyncFailure(kind=FILESYSTEM, message=message, paths=paths)

    def _existing(self, file_ref):
        if file_ref.path not in self._files:
            raise SyncFailure(
                kind=FILESYSTEM,
                message=u"No such file: {}".format(file_ref.path),
                paths=[file_ref.path],
            )

    @log_call_deferred(u"filestore:list-files")
    def list_files(self):
        self._check("list_files")
        return [self._ref(path) for path in self.paths()]

    @log_call_deferred(u"filestore:read", fields=_path_fields)
    def read(self, file_ref):
        self._check("read", file_ref.path)
        self._existing(file_ref)
        return self._files[file_ref.path][0]

    @log_call_deferred(u"filestore:delete", fields=_path_fields)
    def delete(self, file_ref):
        self._check("delete", file_ref.path)
        self._existing(file_ref)
        del self._files[file_ref.path]
        self.actions.append(("delete", file_ref.path))

    @log_call_deferred(u"filestore:rename", fields=_rename_fields)
    def rename(self, file_ref, new_path):
        self._check("rename", file_ref.path, new_path)
        self._existing(file_ref)
        if new_path in self._files:
            raise SyncFailure(
                kind=FILESYSTEM,
                message=u"Can't rename {} to {}: target exists".format(
                    file_ref.path,
                    new_path,
                ),
                paths=[file_ref.path, new_path],
            )
        self._files[new_path] = self._files.pop(file_ref.path)
        self.actions.append(("rename", file_ref.path, new_path))
        return self._ref(new_path)
