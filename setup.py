"""Setup script for the FX Platform."""

from setuptools import setup, find_packages

setup(
    name="fx_platform",
    version="0.1.0",
    description="Multi-currency balances with atomic FX conversions and a transactional outbox",
    author="ML Roadmap Bootcamp",
    python_requires=">=3.10",
    packages=find_packages(include=["fx_platform", "fx_platform.*"]),
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#") and not line.startswith("git+")
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.0",
            "pytest-mock>=3.12.0",
        ],
        "dev": [
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "fx-platform-api=fx_platform.api.main:run",
            "fx-outbox-publisher=fx_platform.workers.outbox_publisher:main",
        ]
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Financial and Insurance Industry",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
