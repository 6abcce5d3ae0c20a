"""Setup script for the command center package and its CLI."""

from setuptools import find_namespace_packages, find_packages, setup

setup(
    name="commandcenter",
    version="0.1.0",
    description="Natural language remote command execution with live event streaming",
    author="Command Center Team",
    packages=(
        find_packages(include=["commandcenter", "commandcenter.*", "ccctl", "ccctl.*"])
        + find_namespace_packages(include=["services", "services.commander"])
    ),
    install_requires=[
        "nats-py>=2.7.0",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "structlog>=24.1.0",
        "httpx>=0.26.0",
        "paramiko>=3.2.0",
        "fastapi>=0.109.0",
        "uvicorn[standard]>=0.27.0",
        "click>=8.1.7",
        "rich>=13.7.0",
        "discord.py>=2.3.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "ccctl=ccctl.main:main",
        ],
    },
    python_requires=">=3.10",
)
