#!/usr/bin/env python3
"""
Setup configuration for the KIS portfolio consolidation backend
"""

from setuptools import setup, find_packages

setup(
    name="kis-portfolio-backend",
    version="1.0.0",
    description="KIS multi-account portfolio consolidation backend",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "httpx>=0.24.0",
        "redis>=4.5.0",
        "python-dotenv>=1.0.0",
        "pytz>=2023.3",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-mock>=3.10.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "kis-portfolio=kis_portfolio.__main__:main",
        ],
    },
)
