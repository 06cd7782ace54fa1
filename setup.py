#!/usr/bin/env python3
"""
Setup script for unisrv.
Installs the rollout engine, the API SDK and the command-line client.
"""

from setuptools import setup, find_packages

# Most configuration is in pyproject.toml
# This file exists for compatibility with older pip versions

setup(
    packages=find_packages(include=["unisrv", "unisrv.*", "unisrv_sdk", "unisrv_client", "unisrv_client.*"]),
)
