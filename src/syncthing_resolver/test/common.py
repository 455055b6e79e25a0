"""
Base classes and helpers shared by the unit tests.
"""

__all__ = [
    "SyncTestCase",
    "success_result_of",
]

from unittest import case as _case

from testtools import (
    TestCase,
)
from testtools.twistedsupport import (
    SynchronousDeferredRunTest,
)

from twisted.python.filepath import FilePath
from twisted.trial.unittest import SynchronousTestCase as _TwistedSynchronousTestCase

from .eliotutil import (
    EliotLoggedRunTest,
)


class _AssertRaises(_case.TestCase):
    def runTest(self):
        pass


class SyncTestCase(TestCase):
    """
    A testtools ``TestCase`` whose tests may return already-fired
    ``Deferred`` instances.

    Every test runs inside its own Eliot action; the messages it logs are
    validated and available as ``self.eliot_logger``.
    """
    run_tests_with = EliotLoggedRunTest.make_factory(
        SynchronousDeferredRunTest,
    )

    _assert_raises = _AssertRaises()

    def mktemp(self):
        """
        :return str: a path, unique to this test and to this call, whose
            parent exists but which does not exist itself.
        """
        # self.id() is "package.module.Class.test_name"
        scratch = FilePath(u".").descendant(self.id().split("."))
        scratch.makedirs(ignoreExistingDirectory=True)
        scratch.chmod(0o755)
        return scratch.child(u"tmp").temporarySibling().asTextMode().path

    def assertRaises(self, *a, **kw):
        """
        ``unittest``'s ``assertRaises``, which can also be used as a context
        manager (unlike the testtools one).
        """
        return self._assert_raises.assertRaises(*a, **kw)

    # testtools.TestCase needs this to be instantiated without a method name
    def runTest(self, *a, **kw):
        raise NotImplementedError


# trial only offers successResultOf as a method
success_result_of = _TwistedSynchronousTestCase().successResultOf
