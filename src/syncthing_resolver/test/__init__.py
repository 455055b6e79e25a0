# Copyright (c) Least Authority TFA GmbH.
# See COPYING.* for details.

"""
The unit tests for syncthing-resolver.

Importing this package sets up Hypothesis and Eliot for the test run; it is
never imported by the application itself.
"""

from sys import (
    stderr,
)


def _configure_hypothesis():
    from os import environ

    from hypothesis import (
        HealthCheck,
        settings,
    )

    # Hypothesis profile names are global: keep the "syncthing-resolver-"
    # prefix on any new ones.
    deadline_ms = 10 * 60 * 1000

    settings.register_profile(
        "syncthing-resolver-fast",
        max_examples=1,
        suppress_health_check=[HealthCheck.too_slow],
        deadline=deadline_ms,
    )

    # generation speed on shared CI runners says nothing about our code
    settings.register_profile(
        "syncthing-resolver-ci",
        suppress_health_check=[HealthCheck.too_slow],
        deadline=deadline_ms,
    )

    profile_name = environ.get("SYNCTHING_RESOLVER_HYPOTHESIS_PROFILE", "default")
    print("Loading Hypothesis profile {}".format(profile_name), file=stderr)
    settings.load_profile(profile_name)


_configure_hypothesis()

from eliot import to_file
to_file(open("eliot.log", "w", encoding="utf8"))
