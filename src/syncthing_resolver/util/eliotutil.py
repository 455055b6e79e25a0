# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
Eliot logging utilities.
"""

import json
import os
from functools import wraps

import attr
from eliot import (
    Action,
    Field,
    FileDestination,
    ValidationError,
    add_destinations,
    remove_destination,
    start_action,
    start_task,
)
from eliot.twisted import (
    DeferredContext,
    inline_callbacks,
)
from twisted.application.service import Service
from twisted.internet.defer import (
    maybeDeferred,
)
from twisted.python import usage


def validateSetMembership(s):
    """
    Return an Eliot validator that requires values to be elements of ``s``.
    """
    def validator(v):
        if v not in s:
            raise ValidationError("{} not in {}".format(v, s))
    return validator


FAILURE_KIND = Field(
    u"kind",
    lambda kind: kind,
    u"The kind of a failure.",
    validateSetMembership({u"transport", u"validation", u"not-found", u"filesystem"}),
)


def opt_eliot_fd(self, fd):
    """
    File descriptor to send log eliot to.
    """
    try:
        fd = int(fd)
    except Exception as e:
        raise usage.UsageError(str(e))

    stdio_fds = {
        1: self.stdout,
        2: self.stderr,
    }

    def to_fd(reactor):
        f = stdio_fds.get(fd)
        if f is None:
            f = os.fdopen(fd, "w")
        return FileDestination(f)

    self.setdefault("eliot-destinations", []).append(to_fd)


def opt_eliot_task_fields(self, task_fields):
    """
    Wrap all logs in a task with given (JSON) fields. (for testing)
    """
    try:
        task_fields = json.loads(task_fields)
    except Exception as e:
        raise usage.UsageError(str(e))
    self.setdefault("eliot-task-fields", {}).update(task_fields)


def with_eliot_options(cls):
    cls.opt_eliot_fd = opt_eliot_fd
    cls.opt_eliot_task_fields = opt_eliot_task_fields
    return cls


def maybe_enable_eliot_logging(options, reactor):
    """
    Start sending eliot logs to the destinations named on the command line
    (if any) until the reactor shuts down.

    :returns: the running logging service, or None.
    """
    destinations = options.get("eliot-destinations")
    task_fields = options.get("eliot-task-fields")
    if not destinations:
        return None

    destinations = [destination(reactor) for destination in destinations]
    service = _EliotLogging(destinations, task_fields)
    service.startService()
    reactor.addSystemEventTrigger("after", "shutdown", service.stopService)
    return service


@attr.s
class _EliotLogging(Service):
    """
    A service which adds Eliot destinations while it is running.

    :ivar list[eliot.IDestination] destinations: The Eliot destinations
        which are added by this service.
    """

    destinations = attr.ib(
        validator=attr.validators.deep_iterable(attr.validators.is_callable())
    )
    task_fields = attr.ib(
        default=None,
        validator=attr.validators.optional(attr.validators.instance_of(dict))
    )
    task = attr.ib(
        init=False,
        default=None,
        validator=attr.validators.optional(attr.validators.instance_of(Action)),
    )

    def startService(self):
        if self.task_fields:
            self.task = start_task(**self.task_fields)
            self.task.__enter__()
        add_destinations(*self.destinations)
        return Service.startService(self)

    def stopService(self):
        if self.task is not None:
            self.task.finish()
        for dest in self.destinations:
            remove_destination(dest)
        return Service.stopService(self)


def log_call_deferred(action_type, fields=None):
    """
    Like ``eliot.log_call`` but for functions which return ``Deferred``:
    the action finishes when the ``Deferred`` fires.

    :param fields: if given, called with the decorated function's
        arguments; returns a dict of extra fields for the start of the
        action. The values must be JSON-serializable.
    """

    def decorate_log_call_deferred(f):
        @wraps(f)
        def logged_f(*a, **kw):
            start_fields = {} if fields is None else fields(*a, **kw)
            # context() rather than `with action` so the action outlives
            # this block
            with start_action(action_type=action_type, **start_fields).context():
                d = maybeDeferred(f, *a, **kw)
                return DeferredContext(d).addActionFinish()

        return logged_f

    return decorate_log_call_deferred


def log_inline_callbacks(action_type, fields=None):
    """
    :py:`log_call_deferred` for a generator function, which is run with
    eliot's ``inline_callbacks``.
    """

    def wrap(f):
        return log_call_deferred(action_type, fields=fields)(inline_callbacks(f))

    return wrap
