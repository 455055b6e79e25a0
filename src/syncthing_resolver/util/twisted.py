# Copyright (c) Least Authority TFA GmbH.

"""
Utilities for interacting with twisted.
"""

from functools import wraps

import attr
from twisted.internet.defer import (
    DeferredLock,
)


@attr.s
class KeyedLock(object):
    """
    A collection of :py:`DeferredLock` instances, one per key.

    Work for the same key runs one-at-a-time, in the order it was
    requested; work for different keys is independent.  A key's lock is
    forgotten once nothing holds or waits for it.
    """
    _locks = attr.ib(init=False, factory=dict)

    def run(self, key, f, *args, **kwargs):
        """
        Acquire the lock for ``key``, run ``f`` and release the lock when
        the result of ``f`` is available.

        :returns Deferred: fires with the result of ``f``.
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = DeferredLock()

        def forget(result):
            if not lock.locked and not lock.waiting and self._locks.get(key) is lock:
                del self._locks[key]
            return result

        d = lock.run(f, *args, **kwargs)
        d.addBoth(forget)
        return d

    def is_locked(self, key):
        """
        :returns bool: True if work for ``key`` is in progress.
        """
        lock = self._locks.get(key)
        return lock is not None and lock.locked


def exclusively_by(key_function, locks_name="_locks"):
    """
    A method decorator that runs the method while holding the lock for the
    key ``key_function`` computes from the method's arguments.

    :param key_function: called with the method's positional and keyword
        arguments (without ``self``); returns the key.

    :param str locks_name: The name of the :py:`KeyedLock` attribute to use.
    """

    def wrap(f):
        @wraps(f)
        def wrapper(self, *args, **kwargs):
            key = key_function(*args, **kwargs)
            return getattr(self, locks_name).run(key, f, self, *args, **kwargs)

        return wrapper

    return wrap
