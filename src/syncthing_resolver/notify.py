# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
Where progress and failure notifications go.
"""

import attr
from eliot import (
    Message,
)
from zope.interface import (
    Interface,
    implementer,
)

DEFAULT_DURATION_MS = 5000


class INotifier(Interface):
    """
    Shows short-lived messages to the user.
    """

    def notify(message, duration_ms=DEFAULT_DURATION_MS):
        """
        :param unicode message: what to show.
        :param int duration_ms: how long the message should stay visible.
        """


@implementer(INotifier)
class LoggingNotifier(object):
    """
    Only records notifications in the eliot log.
    """

    def notify(self, message, duration_ms=DEFAULT_DURATION_MS):
        Message.log(
            message_type=u"notify",
            message=message,
            duration_ms=duration_ms,
        )


@implementer(INotifier)
@attr.s
class StreamNotifier(object):
    """
    Writes each notification as a line of text.
    """
    stream = attr.ib()

    def notify(self, message, duration_ms=DEFAULT_DURATION_MS):
        Message.log(
            message_type=u"notify",
            message=message,
            duration_ms=duration_ms,
        )
        print(message, file=self.stream)


@implementer(INotifier)
@attr.s
class RecordingNotifier(object):
    """
    Remembers every notification. Generally for testing.
    """
    notifications = attr.ib(default=attr.Factory(list))

    def notify(self, message, duration_ms=DEFAULT_DURATION_MS):
        self.notifications.append((message, duration_ms))

    @property
    def messages(self):
        return [message for message, _ in self.notifications]
