# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
The single entry point of the presentation layer.

Every public operation returns a Deferred that fires with either its
result or a ``SyncFailure``; failures are also sent to the notifier. It
never fires with an error for a ``SyncFailure``.

The *base* of a group is the file its variants are compared against: the
original, or the oldest conflict when the original is gone.
"""

import attr
from attr.validators import (
    in_,
    instance_of,
    optional,
)
from eliot import (
    Field,
    MessageType,
    start_action,
)
from eliot.twisted import (
    inline_callbacks,
)

from .common import (
    FILESYSTEM,
    NOT_FOUND,
    SyncFailure,
)
from .diff import (
    DiffResult,
    diff,
    render_unified,
)
from .filestore import (
    FileRef,
    IFileStore,
)
from .notify import (
    DEFAULT_DURATION_MS,
    INotifier,
)
from .resolution import (
    OPEN,
    GroupResolution,
)
from .scanner import (
    ConflictGroup,
    find_conflict_groups,
    parse_conflict_name,
    scan_groups,
)
from .util.attrs_zope import (
    provides,
)
from .util.eliotutil import (
    FAILURE_KIND,
)
from .util.twisted import (
    KeyedLock,
    exclusively_by,
)

ACCEPT_CHOSEN = u"accept-chosen"
ACCEPT_ORIGINAL = u"accept-original"
MANUAL = u"manual"

ACTIONS = (ACCEPT_CHOSEN, ACCEPT_ORIGINAL, MANUAL)

_DELETE = u"delete"
_RENAME = u"rename"

_OPERATION = Field.for_types(
    u"operation",
    [str],
    u"The controller operation that failed.",
)

_REASON = Field.for_types(
    u"reason",
    [str],
    u"The message of the failure.",
)

_PATHS = Field(
    u"paths",
    lambda paths: list(paths),
    u"The file paths involved in the failure.",
)

OPERATION_FAILED = MessageType(
    u"controller:operation-failed",
    [_OPERATION, FAILURE_KIND, _REASON, _PATHS],
    u"A controller operation failed; the failure is returned to the caller.",
)


def base_file(group):
    """
    :returns FileRef: the file the group's variants are compared against.
    """
    if group.original is not None:
        return group.original
    return group.conflicts[0]


def variants(group):
    """
    :returns tuple[FileRef]: the group's files other than its base.
    """
    if group.original is not None:
        return group.conflicts
    return group.conflicts[1:]


def _path_of(file_or_path):
    if isinstance(file_or_path, FileRef):
        return file_or_path.path
    return file_or_path


@attr.s(frozen=True)
class DiffFiles(object):
    """
    What to compare for one conflict group.

    :ivar FileRef original_file: the base of the group.
    :ivar tuple[FileRef] conflicting_files: every other file, oldest first.
    :ivar ConflictGroup group: the group itself, for a later
        ``resolve_conflict``.
    """
    original_file = attr.ib(validator=instance_of(FileRef))
    conflicting_files = attr.ib(converter=tuple)
    group = attr.ib(validator=instance_of(ConflictGroup))


@attr.s(frozen=True)
class ResolutionOutcome(object):
    """
    The result of one ``resolve_conflict`` call.

    :ivar unicode action: the requested action.
    :ivar unicode state: the group's resolution state afterwards.
    :ivar SyncFailure failure: what went wrong, if anything did.
    :ivar tuple review: ``(base, chosen)`` to show side by side, for the
        ``manual`` action.
    :ivar FileRef resolved_file: the file now at the original path, if
        any.
    """
    action = attr.ib(validator=in_(ACTIONS))
    state = attr.ib(validator=instance_of(str))
    failure = attr.ib(default=None, validator=optional(instance_of(SyncFailure)))
    review = attr.ib(default=None)
    resolved_file = attr.ib(default=None, validator=optional(instance_of(FileRef)))

    @property
    def succeeded(self):
        return self.failure is None


@attr.s
class ConflictController(object):
    """
    :ivar IFileStore store: the files of one Syncthing folder.

    :ivar repository: a ``SyncthingRepository`` (only used to describe
        where a conflict came from).

    :ivar INotifier notifier: receives progress and failure messages.

    :ivar renderer: turns a ``DiffResult`` into markup.
    """

    store = attr.ib(validator=provides(IFileStore))
    repository = attr.ib()
    notifier = attr.ib(validator=provides(INotifier))
    renderer = attr.ib(default=render_unified)
    _locks = attr.ib(init=False, factory=KeyedLock)
    _resolutions = attr.ib(init=False, factory=dict)

    def _notify(self, message):
        self.notifier.notify(message, DEFAULT_DURATION_MS)

    def _failed(self, operation, failure):
        OPERATION_FAILED(
            operation=operation,
            kind=failure.kind,
            reason=failure.message,
            paths=failure.paths,
        ).write()
        self._notify(failure.message)
        return failure

    @inline_callbacks
    def list_conflicts(self):
        """
        :returns Deferred[list[ConflictGroup] | SyncFailure]: the groups
            that have conflicts, sorted by key.
        """
        try:
            groups = yield find_conflict_groups(self.store)
        except SyncFailure as e:
            return self._failed(u"list-conflicts", e)
        return groups

    @inline_callbacks
    def get_diff_files(self, file):
        """
        Find the conflict group ``file`` belongs to. Nothing is asked of
        the daemon.

        :param file: a FileRef or a path; any file of the group, or the
            group's original path.

        :returns Deferred[DiffFiles | SyncFailure]:
        """
        path = _path_of(file)
        try:
            groups = yield find_conflict_groups(self.store)
        except SyncFailure as e:
            return self._failed(u"get-diff-files", e)
        for group in groups:
            if group.key == path or group.contains(path):
                return DiffFiles(
                    original_file=base_file(group),
                    conflicting_files=variants(group),
                    group=group,
                )
        return self._failed(
            u"get-diff-files",
            SyncFailure(
                kind=NOT_FOUND,
                message=u"{} is not part of any conflict".format(path),
                paths=[path],
            ),
        )

    @inline_callbacks
    def _diff(self, original, conflicting):
        original_text = yield self.store.read(original)
        conflicting_text = yield self.store.read(conflicting)
        return diff(
            original_text,
            conflicting_text,
            source_a=original.path,
            source_b=conflicting.path,
        )

    @inline_callbacks
    def get_diff(self, original, conflicting):
        """
        :param FileRef original: the "old" side.
        :param FileRef conflicting: the "new" side.

        :returns Deferred[DiffResult | SyncFailure]:
        """
        try:
            result = yield self._diff(original, conflicting)
        except SyncFailure as e:
            return self._failed(u"get-diff", e)
        return result

    @inline_callbacks
    def get_diff_content(self, original, conflicting):
        """
        :returns Deferred[unicode | SyncFailure]: the rendered comparison.
        """
        result = yield self.get_diff(original, conflicting)
        if not isinstance(result, DiffResult):
            return result
        return self.renderer(result)

    @inline_callbacks
    def describe_origin(self, conflict_file):
        """
        :param conflict_file: a FileRef or path carrying a conflict marker.

        :returns Deferred[Device | SyncFailure]: the configured device whose
            change lost.
        """
        path = _path_of(conflict_file)
        marker = parse_conflict_name(path.rsplit(u"/", 1)[-1])
        if marker is None:
            return self._failed(
                u"describe-origin",
                SyncFailure(
                    kind=NOT_FOUND,
                    message=u"{} is not a conflict file".format(path),
                    paths=[path],
                ),
            )
        try:
            devices = yield self.repository.get_devices()
        except SyncFailure as e:
            return self._failed(u"describe-origin", e)
        for device in devices:
            if device.matches_short_id(marker.device_short_id):
                return device
        return self._failed(
            u"describe-origin",
            SyncFailure(
                kind=NOT_FOUND,
                message=u"No configured device matches {} (from {})".format(
                    marker.device_short_id,
                    path,
                ),
                paths=[path],
            ),
        )

    def state_for(self, group):
        """
        :param group: a ConflictGroup or its key.

        :returns unicode: the last known resolution state of the group.
        """
        key = group.key if isinstance(group, ConflictGroup) else group
        resolution = self._resolutions.get(key)
        if resolution is None:
            return OPEN
        return resolution.state

    @inline_callbacks
    def _revalidate(self, group):
        """
        :returns Deferred[ConflictGroup]: ``group`` if the store still
            contains exactly it.
        """
        files = yield self.store.list_files()
        for fresh in scan_groups(files):
            if fresh.key == group.key:
                if fresh == group and fresh.is_conflicted:
                    return fresh
                break
        raise SyncFailure(
            kind=NOT_FOUND,
            message=u"The conflict for {} changed on disk; scan it again".format(group.key),
            paths=[group.key],
        )

    def _chosen(self, group, chosen_file, action):
        path = _path_of(chosen_file)
        for candidate in group.files:
            if candidate.path != path:
                continue
            if action == MANUAL or candidate in variants(group):
                return candidate
            if action == ACCEPT_CHOSEN and group.original is None:
                # the promoted base takes the original's place
                return candidate
            break
        raise SyncFailure(
            kind=NOT_FOUND,
            message=u"{} is not a conflicting variant of {}".format(path, group.key),
            paths=[path],
        )

    def _plan(self, group, chosen, action):
        base = base_file(group)
        if action == ACCEPT_CHOSEN:
            if chosen == base:
                return [(_RENAME, chosen, group.key)]
            return [(_DELETE, base, None), (_RENAME, chosen, group.key)]
        steps = [(_DELETE, chosen, None)]
        if group.original is None and variants(group) == (chosen,):
            steps.append((_RENAME, base, group.key))
        return steps

    @inline_callbacks
    def _apply(self, resolution, steps, resolved_file=None):
        """
        Run ``steps`` in order, stopping at the first failure.

        :param FileRef resolved_file: what is at the original path if no
            step renames anything there.
        """
        deleted = None
        for index, (step, file_ref, target) in enumerate(steps):
            try:
                if step == _DELETE:
                    self._notify(u"Deleting {}...".format(file_ref.path))
                    yield self.store.delete(file_ref)
                    self._notify(u"Deleted {}".format(file_ref.path))
                    deleted = file_ref
                else:
                    self._notify(u"Renaming {} to {}...".format(file_ref.path, target))
                    resolved_file = yield self.store.rename(file_ref, target)
                    self._notify(u"Renamed {} to {}".format(file_ref.path, target))
            except SyncFailure as e:
                if index == 0:
                    resolution.abort(e)
                    return
                resolution.fail_partially(SyncFailure(
                    kind=FILESYSTEM,
                    message=(
                        u"{deleted} was deleted but {source} could not be renamed "
                        u"to {target}: {reason}. Rename it by hand."
                    ).format(
                        deleted=deleted.path,
                        source=file_ref.path,
                        target=target,
                        reason=e.message,
                    ),
                    paths=[deleted.path, file_ref.path],
                ))
                return
        resolution.complete(resolved_file)

    @exclusively_by(lambda group, chosen_file, action: group.key)
    @inline_callbacks
    def resolve_conflict(self, group, chosen_file, action):
        """
        Carry out the user's decision for ``group``.

        ``accept-chosen`` deletes the base and renames ``chosen_file`` to
        the original path; ``accept-original`` deletes ``chosen_file`` (and
        promotes the base to the original path once no other variant is
        left); ``manual`` changes nothing and returns the pair to review.

        Only one resolution per group runs at a time. ``group`` must still
        match the store exactly.

        :param ConflictGroup group: as returned by ``list_conflicts`` or
            ``get_diff_files``.
        :param chosen_file: a FileRef or path in ``group``.
        :param unicode action: one of ``ACTIONS``.

        :returns Deferred[ResolutionOutcome]:
        """
        if action not in ACTIONS:
            raise ValueError("Unknown action {!r}".format(action))

        with start_action(
            action_type=u"controller:resolve-conflict",
            key=group.key,
            chosen=_path_of(chosen_file),
            resolution=action,
        ) as eliot_action:
            resolution = self._resolutions.get(group.key)
            try:
                current = yield self._revalidate(group)
                chosen = self._chosen(current, chosen_file, action)
            except SyncFailure as e:
                eliot_action.add_success_fields(state=self.state_for(group))
                return ResolutionOutcome(
                    action=action,
                    state=self.state_for(group),
                    failure=self._failed(u"resolve-conflict", e),
                )

            if resolution is None or resolution.is_terminal:
                resolution = GroupResolution(key=group.key)
                self._resolutions[group.key] = resolution
            resolution.choose(action)

            base = base_file(current)
            if action == MANUAL:
                resolution.review()
                self._notify(u"Opening {} and {} side by side".format(base.path, chosen.path))
                eliot_action.add_success_fields(state=resolution.state)
                return ResolutionOutcome(
                    action=action,
                    state=resolution.state,
                    review=(base, chosen),
                )

            if action == ACCEPT_CHOSEN:
                self._notify(u"Resolving conflict: accepting {}".format(chosen.path))
            else:
                self._notify(u"Resolving conflict: accepting {}".format(base.path))
            resolution.begin()
            yield self._apply(
                resolution,
                self._plan(current, chosen, action),
                resolved_file=current.original,
            )

            if resolution.failure is not None:
                self._failed(u"resolve-conflict", resolution.failure)
            else:
                self._notify(u"Conflict resolved for {}".format(group.key))
            eliot_action.add_success_fields(state=resolution.state)
            return ResolutionOutcome(
                action=action,
                state=resolution.state,
                failure=resolution.failure,
                resolved_file=resolution.resolved_file,
            )
