"""Setup for the audit chain Python SDK."""

from setuptools import find_packages, setup

setup(
    name="auditchain-sdk",
    version="0.1.0",
    description="Audit chain client SDK: event batching and delivery",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "requests>=2.31.0",
    ],
    python_requires=">=3.11",
)
