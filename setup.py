"""Setuptools build hooks for tensorfacts."""

from __future__ import annotations

from setuptools import setup

# Metadata lives in pyproject.toml; the wheel stays pure Python so the
# default command class is enough.
setup()
