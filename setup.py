# SPDX-License-Identifier: MPL-2.0
"""Setuptools configuration for backward compatibility.

Packaging metadata for veriforge lives in pyproject.toml; this file only
delegates to it for tools that do not read pyproject.toml yet.
"""
from setuptools import setup

if __name__ == "__main__":
    setup()
