from pathlib import Path
from setuptools import find_packages, setup


ROOT = Path(__file__).parent


def read_version() -> str:
    """Read ``__version__`` from the package without importing it."""
    for line in (ROOT / "pumpsignal" / "__init__.py").read_text().splitlines():
        if line.startswith("__version__"):
            return line.split("=", 1)[1].strip().strip('"')
    raise RuntimeError("__version__ not found")


setup(
    name="pumpsignal",
    version=read_version(),
    description="Signal detection and paper trading for pump.fun token launches",
    packages=find_packages(include=["pumpsignal", "pumpsignal.*"]),
    python_requires=">=3.11",
    install_requires=[
        "aiohttp>=3.9",
        "cachetools>=5.3",
        "orjson>=3.9",
        "prometheus_client>=0.19",
        "pydantic>=2.5",
        "websockets>=12",
    ],
    extras_require={
        "test": ["pytest>=7.4"],
    },
    entry_points={
        "console_scripts": ["pumpsignal=pumpsignal.main:main"],
    },
)
