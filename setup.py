"""Setup script for the Content Audit Platform."""

from setuptools import setup, find_packages

setup(
    name="content-audit",
    version="1.0.0",
    description="Content audit platform: competitive guidelines, content scoring and optimization suggestions",
    packages=find_packages(include=["content_audit", "content_audit.*"]),
    include_package_data=True,
    install_requires=[
        "sqlalchemy>=2.0.0",
        "celery>=5.3.0",
        "redis>=5.0.0",
        "loguru>=0.7.0",
        "python-dotenv>=1.0.0",
        "aiohttp>=3.9.0",
        "beautifulsoup4>=4.12.0",
        "tenacity>=8.2.0",
        "openai>=1.0.0",
        "pydantic>=2.5.0",
        "click>=8.1.0",
        "rich>=13.6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "content-audit=content_audit.cli:cli",
        ],
    },
    python_requires=">=3.10",
)
