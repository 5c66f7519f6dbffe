from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="ccsolver",
    version="0.1.0",
    author="ccsolver developers",
    description="Cross-chain intent solver - quotes, bids and settles intents between Ethereum and Solana",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Office/Business :: Financial",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.11",
    install_requires=[
        "py-ecc>=6.0.0",
        "pycryptodome>=3.19.0",
        "pydantic>=2.5.0",
        "click>=8.1.0",
        "python-dotenv>=1.0.0",
        "colorlog>=6.7.0",
        "aiohttp>=3.9.0",
        "eth-abi>=4.2.0",
        "eth-account>=0.13.0",
        "eth-utils>=4.0.0",
        "solders>=0.21.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "ccsolver=ccsolver.cli.main:cli",
        ],
    },
)
