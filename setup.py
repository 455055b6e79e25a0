#! /usr/bin/env python
# -*- coding: utf-8 -*-

import os
from setuptools import find_packages, setup


def load_requirements(filename):
    basedir = os.path.dirname(os.path.abspath(__file__))
    with open(os.path.join(basedir, "requirements", filename), "r") as f:
        return [
            line.rstrip("\n")
            for line in f.readlines()
            if not line.startswith(("#", "-r")) and line.rstrip("\n")
        ]


def load_version():
    basedir = os.path.dirname(os.path.abspath(__file__))
    scope = {}
    with open(os.path.join(basedir, "src", "syncthing_resolver", "_version.py"), "r") as f:
        exec(f.read(), scope)
    return scope["__version__"]


install_requires = load_requirements("base.in")
test_requires = load_requirements("test.in")


trove_classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "License :: OSI Approved :: GNU General Public License (GPL)",
    "Intended Audience :: End Users/Desktop",
    "Intended Audience :: System Administrators",
    "Operating System :: Microsoft :: Windows",
    "Operating System :: POSIX :: Linux",
    "Operating System :: POSIX",
    "Operating System :: MacOS :: MacOS X",
    "Operating System :: OS Independent",
    "Natural Language :: English",
    "Programming Language :: Python",
    "Programming Language :: Python :: 3",
    "Topic :: Utilities",
    "Topic :: System :: Filesystems",
    "Topic :: System :: Archiving :: Mirroring",
    ]


setup(
    name="syncthing-resolver",
    version=load_version(),
    description="Inspect and resolve Syncthing sync-conflict files",
    long_description=open("README.rst", "r").read(),
    author="the syncthing-resolver developers",
    license="GNU GPL",
    package_dir={"": "src"},
    packages=find_packages("src"),
    classifiers=trove_classifiers,
    python_requires=">=3.8",
    install_requires=install_requires,
    extras_require={
        "test": test_requires,
    },
    include_package_data=True,
    entry_points={
        "console_scripts": [
            "syncthing-resolver = syncthing_resolver.cli:_entry",
        ],
    },
)
