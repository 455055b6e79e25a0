# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
Utilties for dealing with on disk files.
"""

import os
import stat
from errno import ENOENT

import attr
from attr.validators import (
    instance_of,
)


@attr.s(frozen=True)
class FileStat(object):
    """
    What we look at to tell two versions of a regular file apart.
    """

    size = attr.ib(validator=instance_of(int))
    mtime_ns = attr.ib(validator=instance_of(int))


def seconds_to_ns(t):
    return int(t * 1000000000)


def ns_to_seconds_float(t):
    """
    :param int t: nanoseconds
    :returns float: the seconds representation of 't'
    """
    if t is None:
        return None
    return float(t) / 1000000000.0


def get_file_stat(path):
    """
    :param FilePath path: the file to look at. Symlinks are not followed.

    :returns FileStat: the size and modification time of ``path``, or None
        if it is missing or not a regular file.
    """
    try:
        statinfo = os.lstat(path.path)
    except OSError as e:
        if e.errno == ENOENT:
            return None
        raise
    if not stat.S_ISREG(statinfo.st_mode):
        return None
    return FileStat(
        size=statinfo.st_size,
        mtime_ns=statinfo.st_mtime_ns,
    )
