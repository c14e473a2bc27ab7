#!/usr/bin/env python3
"""
setup.py shim for packaging tools that still expect one (stdeb, older distro tooling).

contentsync is built with hatchling from pyproject.toml; a regular install is
just ``pip install .`` (add ``[test]`` for the test suite).
"""

from setuptools import setup

setup()
