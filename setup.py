#!/usr/bin/env python3
"""
Setup configuration for CAFS Convert.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the contents of README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

# Read requirements from requirements.txt
requirements = []
if (this_directory / "requirements.txt").exists():
    requirements = (this_directory / "requirements.txt").read_text().strip().split('\n')
    requirements = [req.strip() for req in requirements if req.strip() and not req.startswith('#')]

setup(
    name="cafs-convert",
    version="1.0.0",
    author="CAFS Developers",
    author_email="",
    description="Content-addressable staging and adaptive zstd compression for directory ingestion",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=['staging*']),
    py_modules=[
        'cafs_convert',
        'base_classes',
        'metadata_tree',
        'resilience_patterns',
        'stash_configs',
        'stash_monitoring',
    ],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "Topic :: System :: Archiving :: Compression",
        "Topic :: System :: Filesystems",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: POSIX",
    ],
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=6.0",
            "pytest-cov",
            "pytest-mock",
            "black",
            "flake8",
            "mypy",
        ],
        "test": [
            "pytest>=6.0",
            "pytest-cov",
            "pytest-mock",
        ],
    },
    entry_points={
        "console_scripts": [
            "cafs-convert=cafs_convert:main",
        ],
    },
    keywords=[
        "content-addressable-storage",
        "deduplication",
        "hard-links",
        "zstd",
        "compression",
    ],
)
