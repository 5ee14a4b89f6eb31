"""Autoflow Core - Setup configuration."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="autoflow-core",
    version="0.4.0",
    author="Autoflow",
    description="Execution engine for visual conversation and booking automations",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["autoflow_core", "autoflow_core.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Web Environment",
        "Framework :: FastAPI",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Communications :: Chat",
        "Topic :: Software Development :: Libraries :: Application Frameworks",
    ],
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "structlog>=23.2.0",
        "sqlalchemy[asyncio]>=2.0.23",
        "aiosqlite>=0.19.0",
        "fastapi>=0.104.0",
        "uvicorn[standard]>=0.24.0",
        "httpx>=0.25.0",
        "click>=8.1.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "postgres": [
            "asyncpg>=0.29.0",
        ],
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "autoflow=autoflow_core.cli:main",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
