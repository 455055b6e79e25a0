# Copyright (c) Least Authority TFA GmbH.
# See COPYING.* for details.

import sys

from .cli import _entry

if __name__ == '__main__':
    sys.exit(_entry())
