"""
pytest configuration for the unit tests.
"""

from .common import SyncTestCase


def pytest_pycollect_makeitem(collector, name, obj):
    # ``SyncTestCase`` is a base class imported into the test modules; its
    # ``runTest`` only exists so testtools can instantiate it and is not a
    # test.
    if obj is SyncTestCase:
        return []
    return None
