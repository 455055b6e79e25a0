# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
Tests for ``syncthing_resolver.filestore``.
"""

from testtools import (
    skipIf,
)
from testtools.matchers import (
    Contains,
    Equals,
    MatchesListwise,
    MatchesStructure,
    StartsWith,
)
from testtools.twistedsupport import (
    succeeded,
)
from twisted.python.filepath import (
    FilePath,
)
from twisted.python.runtime import (
    platform,
)

from ..common import (
    FILESYSTEM,
)
from ..filestore import (
    FileRef,
    IFileStore,
    InMemoryFileStore,
    LocalFileStore,
)
from ..util.file import (
    seconds_to_ns,
)
from .common import (
    SyncTestCase,
    success_result_of,
)
from .fixtures import (
    SyncthingFolder,
)
from .matchers import (
    fails_with_sync_failure,
    provides,
)


class FileRefTests(SyncTestCase):
    def test_at(self):
        """
        ``FileRef.at`` takes the name from the last path segment.
        """
        self.assertThat(
            FileRef.at(u"notes/daily/today.md", 12, 34),
            Equals(FileRef(u"notes/daily/today.md", u"today.md", 12, 34)),
        )

    def test_to_json(self):
        self.assertThat(
            FileRef.at(u"a.txt", 1, 2).to_json(),
            Equals({"path": u"a.txt", "name": u"a.txt", "size": 1, "mtime_ns": 2}),
        )


class LocalFileStoreTests(SyncTestCase):
    """
    Tests for ``LocalFileStore``.
    """

    def setUp(self):
        super(LocalFileStoreTests, self).setUp()
        self.folder = self.useFixture(SyncthingFolder(FilePath(self.mktemp())))
        self.store = self.folder.store

    def test_interface(self):
        self.assertThat(self.store, provides(IFileStore))

    def test_list_files(self):
        """
        Every regular file is listed, sorted by path, with its size and
        modification time; Syncthing's own bookkeeping is skipped.
        """
        self.folder.add(u"b.txt", u"bee", mtime=1000)
        self.folder.add(u"notes/a.md", u"ay\n", mtime=2000.5)
        self.folder.add(u".stversions/b~20240101-113000.txt", u"old")
        self.folder.add(u".stignore", u"*.tmp\n")
        self.assertThat(
            self.store.list_files(),
            succeeded(
                Equals([
                    FileRef.at(u"b.txt", 3, seconds_to_ns(1000)),
                    FileRef.at(u"notes/a.md", 3, seconds_to_ns(2000.5)),
                ]),
            ),
        )

    def test_list_missing_root(self):
        store = LocalFileStore(FilePath(self.mktemp()))
        self.assertThat(
            store.list_files(),
            fails_with_sync_failure(FILESYSTEM, Contains(u"is not a directory")),
        )

    @skipIf(platform.isWindows(), "Windows does not have symlinks")
    def test_list_symlink_loop(self):
        """
        A directory link back to an ancestor is a filesystem failure.
        """
        self.folder.add(u"sub/a.md", u"a")
        self.folder.path.linkTo(self.folder.path.descendant([u"sub", u"loop"]))
        self.assertThat(
            self.store.list_files(),
            fails_with_sync_failure(
                FILESYSTEM,
                StartsWith(u"Can't list {}: ".format(self.folder.path.path)),
            ),
        )

    def test_read(self):
        """
        Content is decoded as UTF-8; undecodable bytes are replaced.
        """
        self.folder.add(u"n.md", u"caf\N{LATIN SMALL LETTER E WITH ACUTE}\n")
        self.folder.path.child(u"bad.bin").setContent(b"ok\xff")
        files = success_result_of(self.store.list_files())
        self.assertThat(
            [success_result_of(self.store.read(f)) for f in files],
            Equals([u"ok\N{REPLACEMENT CHARACTER}", u"caf\N{LATIN SMALL LETTER E WITH ACUTE}\n"]),
        )

    def test_read_missing(self):
        self.assertThat(
            self.store.read(FileRef.at(u"gone.md", 0, 0)),
            fails_with_sync_failure(
                FILESYSTEM,
                StartsWith(u"Can't read gone.md: "),
                (u"gone.md",),
            ),
        )

    def test_delete(self):
        self.folder.add(u"a.md", u"a")
        self.folder.add(u"b.md", u"b")
        files = success_result_of(self.store.list_files())
        self.assertThat(self.store.delete(files[0]), succeeded(Equals(None)))
        self.assertThat(
            self.store.list_files(),
            succeeded(MatchesListwise([MatchesStructure(path=Equals(u"b.md"))])),
        )

    def test_delete_missing(self):
        self.assertThat(
            self.store.delete(FileRef.at(u"gone.md", 0, 0)),
            fails_with_sync_failure(FILESYSTEM, StartsWith(u"Can't delete gone.md: ")),
        )

    def test_rename(self):
        """
        A renamed file keeps its content and is returned at its new path.
        """
        mtime_ns = self.folder.add(u"notes/a.md", u"ay", mtime=5)
        [f] = success_result_of(self.store.list_files())
        self.assertThat(
            self.store.rename(f, u"notes/b.md"),
            succeeded(Equals(FileRef.at(u"notes/b.md", 2, mtime_ns))),
        )
        self.assertThat(
            self.folder.path.descendant([u"notes", u"b.md"]).getContent(),
            Equals(b"ay"),
        )
        self.assertThat(
            self.folder.path.descendant([u"notes", u"a.md"]).exists(),
            Equals(False),
        )

    def test_rename_target_exists(self):
        """
        Renaming never overwrites an existing file.
        """
        self.folder.add(u"a.md", u"a")
        self.folder.add(u"b.md", u"b")
        files = success_result_of(self.store.list_files())
        self.assertThat(
            self.store.rename(files[0], u"b.md"),
            fails_with_sync_failure(
                FILESYSTEM,
                u"Can't rename a.md to b.md: target exists",
                (u"a.md", u"b.md"),
            ),
        )
        self.assertThat(self.folder.path.child(u"b.md").getContent(), Equals(b"b"))

    def test_outside_of_root(self):
        """
        Paths may not escape the store.
        """
        self.assertThat(
            self.store.read(FileRef.at(u"../secret", 0, 0)),
            fails_with_sync_failure(FILESYSTEM, Contains(u"is outside of")),
        )


class InMemoryFileStoreTests(SyncTestCase):
    """
    Tests for ``InMemoryFileStore``.
    """

    def setUp(self):
        super(InMemoryFileStoreTests, self).setUp()
        self.store = InMemoryFileStore()

    def test_interface(self):
        self.assertThat(self.store, provides(IFileStore))

    def test_operations(self):
        a = self.store.add(u"a.md", u"\N{SNOWMAN}", mtime_ns=7)
        self.assertThat(a, Equals(FileRef.at(u"a.md", 3, 7)))
        self.assertThat(self.store.read(a), succeeded(Equals(u"\N{SNOWMAN}")))
        self.assertThat(
            self.store.rename(a, u"b.md"),
            succeeded(Equals(FileRef.at(u"b.md", 3, 7))),
        )
        self.assertThat(self.store.list_files(), succeeded(Equals([FileRef.at(u"b.md", 3, 7)])))
        self.assertThat(
            self.store.delete(FileRef.at(u"b.md", 3, 7)),
            succeeded(Equals(None)),
        )
        self.assertThat(self.store.paths(), Equals([]))
        self.assertThat(
            self.store.actions,
            Equals([("rename", u"a.md", u"b.md"), ("delete", u"b.md")]),
        )

    def test_fail_next(self):
        """
        ``fail_next`` makes only the next call of the operation fail.
        """
        a = self.store.add(u"a.md", u"a")
        self.store.fail_next("delete", u"Read-only file system")
        self.assertThat(
            self.store.delete(a),
            fails_with_sync_failure(FILESYSTEM, u"Read-only file system", (u"a.md",)),
        )
        self.assertThat(self.store.paths(), Equals([u"a.md"]))
        self.assertThat(self.store.delete(a), succeeded(Equals(None)))

    def test_missing(self):
        self.assertThat(
            self.store.read(FileRef.at(u"nope", 0, 0)),
            fails_with_sync_failure(FILESYSTEM, u"No such file: nope"),
        )

    def test_rename_target_exists(self):
        a = self.store.add(u"a.md", u"a")
        self.store.add(u"b.md", u"b")
        self.assertThat(
            self.store.rename(a, u"b.md"),
            fails_with_sync_failure(FILESYSTEM, paths=(u"a.md", u"b.md")),
        )
        self.assertThat(self.store.actions, Equals([]))
