"""Setup script for the Scheduled Test Orchestrator"""

from setuptools import setup, find_packages

setup(
    name="scheduled-test-orchestrator",
    version="1.0.0",
    description="Scheduled test orchestration engine for Jest, k6 and Playwright suites",
    packages=find_packages(include=["orchestrator", "orchestrator.*"]),
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "sqlalchemy[asyncio]>=2.0.0",
        "alembic>=1.12.0",
        "aiomysql>=0.2.0",
        "structlog>=23.1.0",
        "prometheus-client>=0.18.0",
        "python-dotenv>=1.0.0",
        "croniter>=2.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "hypothesis>=6.80.0",
            "aiosqlite>=0.19.0",
        ]
    },
)
