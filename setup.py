from setuptools import setup, find_packages

setup(
    name="zpool-cache",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    install_requires=[
        "pydantic>=2",
        "pydantic-settings",
        "structlog",
        "redis>=5.0.1",
        "pycryptodome",
        "prometheus-client",
        "click",
        "aiohttp"
    ],
    extras_require={
        "test": [
            "pytest"
        ],
    },
    python_requires=">=3.8",
    entry_points={
        "console_scripts": [
            "zpool-cache=cache.cli:main",
        ],
    }
)
