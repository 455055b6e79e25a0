# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
Everything the rest of the program needs to know about the Syncthing
daemon, without caring how it is asked.
"""

import itertools
import os
import random

import attr
from attr.validators import (
    instance_of,
    optional,
)
from eliot import (
    Message,
    start_action,
)
from eliot.twisted import (
    inline_callbacks,
)
from twisted.application.internet import (
    backoffPolicy,
)
from twisted.internet.protocol import (
    ProcessProtocol,
)
from twisted.internet.task import (
    deferLater,
)
from twisted.python.procutils import (
    which,
)
from twisted.web import (
    http,
)

from .common import (
    NOT_FOUND,
    SyncFailure,
    TRANSPORT,
)
from .remote import (
    SyncthingRemoteClient,
)

SYNCTHING_EXECUTABLE = u"syncthing"
SYNCTHING_ARGS = (u"serve", u"--no-browser")
DEFAULT_START_TIMEOUT = 30.0

# what a proxy in front of a daemon that is down answers with
_NOT_SERVING = (http.BAD_GATEWAY, http.SERVICE_UNAVAILABLE, http.GATEWAY_TIMEOUT)


def _delay_sequence(max_delay=5.0, jitter=random.random):
    """
    Produces a sequence of delays (in seconds) for use when polling.
    """
    delay_function = backoffPolicy(
        initialDelay=0.5,
        maxDelay=max_delay,
        jitter=jitter,
    )
    for attempt in itertools.count():
        yield delay_function(attempt)


class _DaemonProcess(ProcessProtocol, object):
    """
    Logs what happens to a daemon we started.
    """

    def processEnded(self, reason):
        Message.log(
            message_type=u"repository:daemon-exited",
            reason=str(reason.value),
        )


@attr.s
class SyncthingRepository(object):
    """
    :ivar SyncthingRemoteClient client: how the daemon is reached.

    :ivar reactor: used to start the daemon and to wait for it.

    :ivar unicode executable: the daemon binary; looked up on ``PATH`` when
        None.

    :ivar float start_timeout: how long :py:`start_syncthing` waits for the
        daemon to answer.
    """

    client = attr.ib(validator=instance_of(SyncthingRemoteClient))
    reactor = attr.ib()
    executable = attr.ib(default=None, validator=optional(instance_of(str)))
    args = attr.ib(default=SYNCTHING_ARGS, converter=tuple)
    start_timeout = attr.ib(default=DEFAULT_START_TIMEOUT)
    _jitter = attr.ib(default=random.random)

    def get_configuration(self):
        """
        :returns Deferred[Configuration]:
        """
        return self.client.get_configuration()

    def get_devices(self):
        """
        :returns Deferred[list[Device]]:
        """
        return self.client.get_devices()

    def get_folders(self):
        """
        :returns Deferred[list[Folder]]:
        """
        return self.client.get_all_folders()

    def get_folders_for_device(self, device):
        """
        :returns Deferred[list[Folder]]: the folders shared with ``device``.
        """
        return self.client.get_folders_for_device(device)

    def get_system_status(self):
        """
        :returns Deferred[SystemStatus]:
        """
        return self.client.get_system_status()

    @inline_callbacks
    def get_this_device(self):
        """
        :returns Deferred[Device]: the device the daemon runs on.
        """
        status = yield self.client.get_system_status()
        devices = yield self.client.get_devices()
        for device in devices:
            if device.device_id == status.my_id:
                return device
        raise SyncFailure(
            kind=NOT_FOUND,
            message=u"The daemon's own device {} is not configured".format(status.my_id),
        )

    @inline_callbacks
    def is_running(self):
        """
        :returns Deferred[bool]: whether the daemon answers a ping. False
            only when no daemon answered; any other answer, such as a
            refused API key, fails with that answer.
        """
        try:
            yield self.client.ping()
        except SyncFailure as e:
            if e.kind != TRANSPORT:
                raise
            if e.http_code is not None and e.http_code not in _NOT_SERVING:
                raise
            return False
        return True

    def _find_executable(self):
        if self.executable is not None:
            return self.executable
        found = which(SYNCTHING_EXECUTABLE)
        if not found:
            raise SyncFailure(
                kind=NOT_FOUND,
                message=u"Can't find {} on PATH".format(SYNCTHING_EXECUTABLE),
            )
        return found[0]

    @inline_callbacks
    def start_syncthing(self):
        """
        Start the daemon unless it is already running, then wait for it to
        answer.

        :returns Deferred[bool]: True once the daemon answers, False if it
            did not within ``start_timeout`` seconds.
        """
        with start_action(action_type=u"repository:start-syncthing") as action:
            running = yield self.is_running()
            if running:
                action.add_success_fields(spawned=False, running=True)
                return True

            executable = self._find_executable()
            self.reactor.spawnProcess(
                _DaemonProcess(),
                executable,
                [executable] + list(self.args),
                env=os.environ,
            )
            running = yield self._wait_until_running()
            action.add_success_fields(spawned=True, running=running)
            return running

    @inline_callbacks
    def _wait_until_running(self):
        deadline = self.reactor.seconds() + self.start_timeout
        for delay in _delay_sequence(jitter=self._jitter):
            if self.reactor.seconds() + delay > deadline:
                return False
            yield deferLater(self.reactor, delay, lambda: None)
            running = yield self.is_running()
            if running:
                return True

    @inline_callbacks
    def stop_syncthing(self):
        """
        Ask the daemon to shut down.

        :returns Deferred[bool]: True when the daemon accepted.
        """
        with start_action(action_type=u"repository:stop-syncthing"):
            yield self.client.shutdown()
            return True
