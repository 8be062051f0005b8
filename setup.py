#!/usr/bin/env python
"""Setup configuration for MedGate."""

from setuptools import find_packages, setup

setup(
    name="medgate",
    version="0.1.0",
    description="Request mediation layer for protected health information",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "boto3>=1.29.7",
        "pydantic>=2.5.0",
        "sqlalchemy>=2.0.23",
        "cryptography>=41.0.0",
        "python-jose[cryptography]>=3.3.0",
        "tenacity>=8.2.0",
        "pydantic-settings>=2.0.0",
        "structlog>=23.2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
)
