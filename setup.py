"""Package setup."""

from setuptools import setup, find_packages

setup(
    name="streamnotify",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "PyYAML>=6.0",
        "APScheduler>=3.10,<4",
        "httpx>=0.24",
        "click>=8.0",
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
            "streamnotify=streamnotify.cli:cli",
        ],
    },
    python_requires=">=3.10",
)
