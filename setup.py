# setup.py
from setuptools import setup, find_namespace_packages

setup(
    name="drand_updater",
    version="0.1.0",
    packages=find_namespace_packages(include=["drand_updater", "drand_updater.*"]),
    python_requires=">=3.9",
    install_requires=[
        "requests",           # drand HTTP API
        "web3>=6",            # oracle contract calls
        "eth-account",        # signer and sender keys
        "eth-abi",            # packed digest encoding
        "eth-utils",
        "pycryptodome",       # keccak
        "prometheus_client",  # monitoring
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "drand-updater=drand_updater.node:cli",
        ],
    },
)
