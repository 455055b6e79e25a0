# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
The life of one resolution of one conflict group.

The controller feeds inputs in; this only tracks where the group is and
what happened to it. The states are::

    open -> resolution_chosen -> resolving -> resolved
                   |                  |   \\-> failed_partial
                   \\-> open (manual)  \\-> open (nothing was changed)

``resolved`` and ``failed_partial`` are terminal; a group left
``failed_partial`` must be scanned again before anything else is done to
it.

To see a diagram::

    automat-visualize syncthing_resolver.resolution
"""

import automat
import attr
from eliot import (
    Message,
)

OPEN = u"open"
RESOLUTION_CHOSEN = u"resolution_chosen"
RESOLVING = u"resolving"
RESOLVED = u"resolved"
FAILED_PARTIAL = u"failed_partial"

TERMINAL_STATES = (RESOLVED, FAILED_PARTIAL)


def _last_one(things):
    """
    Collector for transitions whose only interesting result is the one
    from the final output.
    """
    return list(things)[-1]


@attr.s
class GroupResolution(object):
    """
    :ivar unicode key: the key of the conflict group.

    :ivar unicode state: the name of the current state.

    :ivar unicode action: the chosen resolution action, if any.

    :ivar SyncFailure failure: why the last attempt went wrong, if it did.

    :ivar FileRef resolved_file: the file now at the group's original
        path, once resolved.
    """

    key = attr.ib()
    state = attr.ib(default=OPEN, init=False)
    action = attr.ib(default=None, init=False)
    failure = attr.ib(default=None, init=False)
    resolved_file = attr.ib(default=None, init=False)

    _machine = automat.MethodicalMachine()

    # debug
    set_trace = _machine._setTrace

    def __attrs_post_init__(self):
        def tracer(old_state, the_input, new_state):
            self.state = new_state.lstrip(u"_")
            Message.log(
                message_type=u"resolution:state-transition",
                key=self.key,
                old_state=old_state.lstrip(u"_"),
                trigger=the_input,
                new_state=self.state,
            )
        self.set_trace(tracer)

    @property
    def is_terminal(self):
        return self.state in TERMINAL_STATES

    @_machine.state(initial=True)
    def _open(self):
        """
        The group has conflicts and nothing is being done about them.
        """

    @_machine.state()
    def _resolution_chosen(self):
        """
        The user picked what to do.
        """

    @_machine.state()
    def _resolving(self):
        """
        The file store is being changed.
        """

    @_machine.state()
    def _resolved(self):
        """
        The chosen action was carried out completely.
        """

    @_machine.state()
    def _failed_partial(self):
        """
        Some but not all of the changes were made; the group on disk no
        longer matches what we know about it.
        """

    @_machine.input()
    def choose(self, action):
        """
        The user picked ``action``.
        """

    @_machine.input()
    def review(self):
        """
        The action needs no changes; hand the files to the user.
        """

    @_machine.input()
    def begin(self):
        """
        The first change is about to be made.
        """

    @_machine.input()
    def abort(self, failure):
        """
        Something failed before anything was changed.
        """

    @_machine.input()
    def complete(self, resolved_file):
        """
        Every change was made.
        """

    @_machine.input()
    def fail_partially(self, failure):
        """
        Something failed after something else was changed.
        """

    @_machine.output()
    def _remember_action(self, action):
        self.action = action
        self.failure = None

    @_machine.output()
    def _remember_failure(self, failure):
        self.failure = failure
        return failure

    @_machine.output()
    def _remember_resolved_file(self, resolved_file):
        self.resolved_file = resolved_file
        return resolved_file

    _open.upon(
        choose,
        enter=_resolution_chosen,
        outputs=[_remember_action],
        collector=_last_one,
    )
    _resolution_chosen.upon(
        review,
        enter=_open,
        outputs=[],
    )
    _resolution_chosen.upon(
        begin,
        enter=_resolving,
        outputs=[],
    )
    _resolving.upon(
        abort,
        enter=_open,
        outputs=[_remember_failure],
        collector=_last_one,
    )
    _resolving.upon(
        complete,
        enter=_resolved,
        outputs=[_remember_resolved_file],
        collector=_last_one,
    )
    _resolving.upon(
        fail_partially,
        enter=_failed_partial,
        outputs=[_remember_failure],
        collector=_last_one,
    )
