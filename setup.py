"""Setup configuration for ossstats."""

from setuptools import find_packages, setup

setup(
    name="ossstats",
    version="0.1.0",
    description="Cached npm download and GitHub statistics for an open-source organisation",
    python_requires=">=3.11",
    packages=find_packages(where="src", include=["ossstats*"]),
    package_dir={"": "src"},
    install_requires=[
        "httpx>=0.27.0",
        "pandas>=2.2.0",
        "pydantic>=2.6.0",
        "pydantic-settings>=2.1.0",
        "beautifulsoup4>=4.12.0",
        "fastapi>=0.110.0",
        "uvicorn>=0.27.0",
    ],
    entry_points={
        "console_scripts": [
            "ossstats=ossstats.cli:cli_entry",
        ],
    },
    extras_require={
        "dev": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.0",
            "pytest-mock>=3.12.0",
            "respx>=0.21.0",
            "python-dotenv>=1.0.0",
        ],
    },
)
