#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Setup script for TraceChain

Supply-chain provenance engine: two-tier lineage resolution, role-based
visibility filtering and identity snapshots over a ledger.
"""

from setuptools import setup, find_packages
from pathlib import Path

VERSION = "1.0.0"

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
if readme_file.exists():
    long_description = readme_file.read_text(encoding="utf-8")
else:
    long_description = "TraceChain Supply-Chain Provenance Engine"

setup(
    name="tracechain",
    version=VERSION,
    description="Supply-chain provenance engine",
    long_description=long_description,
    long_description_content_type="text/markdown",
    python_requires=">=3.10",
    packages=find_packages(include=["tracechain", "tracechain.*"]),
    install_requires=[
        "pydantic>=2.0",
        "prometheus_client>=0.17",
        "httpx>=0.24",
        "fastapi>=0.100",
        "typer>=0.9",
        "rich>=13.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "tracechain=tracechain.cli:app",
        ],
    },
)
