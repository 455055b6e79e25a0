"""
attrs validation for objects expected to provide zope interfaces.
"""

from attr import attrs, attrib


@attrs(repr=False, slots=True, hash=True)
class _ProvidesValidator:
    interfaces = attrib(converter=tuple)

    def __call__(self, inst, attribute, value):
        missing = [
            interface
            for interface in self.interfaces
            if not interface.providedBy(value)
        ]
        if missing:
            raise TypeError(
                "'{}' must provide {} but {!r} doesn't.".format(
                    attribute.name,
                    " and ".join(interface.__name__ for interface in missing),
                    value,
                ),
                attribute,
                missing,
                value,
            )

    def __repr__(self):
        return "<provides validator for {}>".format(
            ", ".join(interface.__name__ for interface in self.interfaces),
        )


def provides(*interfaces):
    """
    :param interfaces: ``zope.interface.Interface`` classes.

    :returns: a validator raising ``TypeError`` for values that do not
        provide every one of ``interfaces``.
    """
    return _ProvidesValidator(interfaces)
