"""Setup configuration for the cross-system sync engine."""

from setuptools import setup, find_packages

setup(
    name="crosssync",
    version="0.1.0",
    description="Cross-system data synchronization engine",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "boto3>=1.34.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "hypothesis>=6.88.0",
        ]
    }
)
