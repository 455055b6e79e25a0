# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
Common functions and types used by other modules.
"""

import attr


TRANSPORT = u"transport"
VALIDATION = u"validation"
NOT_FOUND = u"not-found"
FILESYSTEM = u"filesystem"

FAILURE_KINDS = (TRANSPORT, VALIDATION, NOT_FOUND, FILESYSTEM)


@attr.s(auto_exc=True)
class SyncFailure(Exception):
    """
    A failure which is allowed to cross component boundaries.

    Inside a component these travel as the error of a ``Deferred``; the
    controller turns them into plain return values so the presentation
    layer can show them.

    :ivar unicode kind: one of ``FAILURE_KINDS``.

    :ivar unicode message: a human-readable description. For validation
        failures this is every schema violation, one per line.

    :ivar tuple[unicode] paths: the file paths involved, if any. A
        partial resolution names both the deleted and the un-renamed file.

    :ivar int http_code: for a transport failure, the HTTP status the
        daemon answered with; None when no answer arrived at all.
    """

    kind = attr.ib(validator=attr.validators.in_(FAILURE_KINDS))
    message = attr.ib(validator=attr.validators.instance_of(str))
    paths = attr.ib(
        default=(),
        converter=tuple,
        validator=attr.validators.deep_iterable(
            attr.validators.instance_of(str),
        ),
    )
    http_code = attr.ib(
        default=None,
        validator=attr.validators.optional(attr.validators.instance_of(int)),
    )

    @classmethod
    def from_exception(cls, kind, exception, prefix=None, paths=()):
        """
        Return a failure of the given kind with a message taken from the
        given exception.

        :returns SyncFailure: a failure whose message is
            ``"{prefix}: {exception message}"``.
        """
        if prefix is not None:
            message = u"{}: {}".format(prefix, exception)
        else:
            message = u"{}".format(exception)
        return cls(kind=kind, message=message, paths=paths)

    def to_json(self):
        """
        :return: a representation of this failure suitable for JSON encoding.
        """
        return {
            "kind": self.kind,
            "message": self.message,
            "paths": list(self.paths),
        }

    def __str__(self):
        return self.message
