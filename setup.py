#!/usr/bin/env python3
"""Setup script for City Digest."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="citydigest",
    version="0.1.0",
    author="City Digest Team",
    author_email="team@example.com",
    description="Content curation pipeline for a daily New York City digest",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/citydigest",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Information Technology",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Text Processing :: Linguistic",
    ],
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.5",
        "pydantic-settings>=2.2",
        "httpx>=0.27",
        "structlog>=24.1",
        "orjson>=3.10",
        "click>=8.1",
        "pyyaml>=6.0",
        "rich>=13.7.1",
        "openai>=1.97.0",
        "numpy",
    ],
    extras_require={
        "dev": [
            "pytest>=8.2",
            "pytest-asyncio>=0.23",
            "ruff>=0.4",
            "mypy>=1.10",
            "coverage>=7.5",
            "pytest-cov>=4.1",
        ]
    },
    entry_points={
        "console_scripts": [
            "citydigest=citydigest.orchestrator:cli",
            "check-sources=citydigest.check_sources:main",
        ],
    },
    include_package_data=True,
    package_data={
        "citydigest": ["*.yaml"],
    },
)
