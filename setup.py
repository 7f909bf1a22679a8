"""Setup file for CartSync package."""
from setuptools import setup, find_namespace_packages

setup(
    name="cartsync",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src"),
    install_requires=[
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "python-dotenv>=1.0",
        "loguru>=0.7",
        "sqlalchemy[asyncio]>=2.0",
        "aiosqlite>=0.19",
        "httpx>=0.27",
    ],
    extras_require={
        "test": [
            "pytest>=8.1.1",
            "pytest-asyncio>=0.23",
        ],
    },
    python_requires=">=3.11",
)
