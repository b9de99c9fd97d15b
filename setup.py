"""
Oracle Gateway setup.py: install the gateway package and its runner.

Usage:
    pip install .                          # install everything
    pip install ".[dev]"                   # install with dev tools
"""

from pathlib import Path

from setuptools import find_packages, setup

HERE = Path(__file__).resolve().parent
long_description = ""
if (HERE / "README.md").exists():
    long_description = (HERE / "README.md").read_text(encoding="utf-8")

setup(
    name="oracle-gateway",
    version="1.0.0",
    description="HTTP gateway for an on-chain staked price oracle with token governance",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="MIT",
    author="Oracle Gateway Contributors",
    python_requires=">=3.10",
    packages=find_packages(exclude=["tests", "tests.*", "scripts", "build"]),
    py_modules=["run_gateway"],
    install_requires=[
        "aiohttp>=3.9.0,<4",
        "tomli>=2.0.0,<3;python_version<'3.11'",
        "solana>=0.34",
        "solders>=0.21",
        "anchorpy>=0.20",
        "borsh-construct>=0.1.0,<0.2",
        "construct>=2.10,<3",
        "httpx>=0.24",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            # anchorpy auto-loads a pytest plugin that imports these
            "pytest-xprocess>=0.18.1,<0.19",
            "py>=1.11.0,<2",
        ],
        "dev": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            # anchorpy auto-loads a pytest plugin that imports these
            "pytest-xprocess>=0.18.1,<0.19",
            "py>=1.11.0,<2",
            "pytest-cov>=4.0",
            "mypy>=1.5",
            "ruff>=0.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "oracle-gateway=run_gateway:main_sync",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Framework :: AsyncIO",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
        "Topic :: Software Development :: Libraries",
    ],
)
