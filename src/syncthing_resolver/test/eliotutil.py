"""
Run every test inside its own Eliot action, with the messages it logs
captured and validated.
"""

__all__ = [
    "RUN_TEST",
    "EliotLoggedRunTest",
    "eliot_logged_test",
]

from functools import (
    wraps,
    partial,
)

import attr

from eliot import (
    ActionType,
    Field,
)
from eliot.testing import capture_logging
from eliot.twisted import DeferredContext

from twisted.internet.defer import (
    maybeDeferred,
)

_NAME = Field.for_types(
    u"name",
    [str],
    u"The id of the test.",
)

RUN_TEST = ActionType(
    u"run-test",
    [_NAME],
    [],
    u"A test is run.",
)


def eliot_logged_test(f):
    """
    Decorate a ``run`` method so the test runs in a ``run-test`` action
    which finishes once the test (and its Deferred, if any) is done.

    Messages are captured in a ``MemoryLogger`` (validated when the test
    finishes; the test case gets it as ``eliot_logger``) and then copied to
    the default logger.
    """
    @wraps(f)
    def run_and_republish(self, *a, **kw):
        captured = {}

        def republish():
            # Imported late to get the logger in effect when the test ran.
            from eliot._output import _DEFAULT_LOGGER as default_logger
            logger = captured["logger"]
            for message, serializer in zip(logger.messages, logger.serializers):
                default_logger.write(message, serializer)

        @capture_logging(None)
        def run(self, logger):
            captured["logger"] = logger
            self.eliot_logger = logger
            return f(self, *a, **kw)

        # must be registered before capture_logging's own cleanup runs
        self.addCleanup(republish)
        with RUN_TEST(name=self.id()).context():
            return DeferredContext(maybeDeferred(run, self)).addActionFinish()

    return run_and_republish


@attr.s
class EliotLoggedRunTest(object):
    """
    A *RunTest* which wraps another one in :py:`eliot_logged_test`.

    :ivar _run_tests_with_factory: makes the wrapped *RunTest*.
    :ivar case: the test case to run.
    :ivar handlers: passed to the wrapped *RunTest*.
    :ivar last_resort: passed to the wrapped *RunTest*.
    """
    _run_tests_with_factory = attr.ib()
    case = attr.ib()
    handlers = attr.ib(default=None)
    last_resort = attr.ib(default=None)

    @classmethod
    def make_factory(cls, delegated_run_test_factory):
        return partial(cls, delegated_run_test_factory)

    @property
    def eliot_logger(self):
        return self.case.eliot_logger

    @eliot_logger.setter
    def eliot_logger(self, value):
        self.case.eliot_logger = value

    def addCleanup(self, *a, **kw):
        return self.case.addCleanup(*a, **kw)

    def id(self):
        return self.case.id()

    @eliot_logged_test
    def run(self, result=None):
        return self._run_tests_with_factory(
            self.case,
            self.handlers,
            self.last_resort,
        ).run(result)
