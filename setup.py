"""
chargrad — Setup Script
========================
Installs chargrad as a local editable package so that all internal
imports (e.g. `from chargrad.model.value import Value`) work seamlessly
from any script, test or notebook.

Usage:
    cd /path/to/chargrad
    pip install -e .
"""

from setuptools import setup, find_packages

setup(
    name="chargrad",
    version="0.1.0",
    author="Aditya",
    description=(
        "chargrad: a character-level GPT trained on its own scalar "
        "reverse-mode autograd engine"
    ),
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["chargrad", "chargrad.*"]),
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.24.0",
        "tqdm>=4.65.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": ["pytest>=7.0"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Education",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],
)
