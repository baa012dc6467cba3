from setuptools import setup, find_packages

setup(
    name="codesearch",
    version="1.0.0",
    packages=find_packages(include=["codesearch", "codesearch.*"]),
    install_requires=[
        "requests",
        "pyyaml",
        "numpy",
        # File watching and CLI progress
        "watchdog>=3.0",
        "tqdm>=4.60",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "codesearch=codesearch.kb.cli:main",
        ],
    },
    author="Uday Kanth",
    description="Local incremental semantic code index with retrieval-augmented answers.",
)
