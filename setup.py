#!/usr/bin/env python3
"""
Setup configuration for the tire-ml-backend package
Allows installation via: pip install -e .
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read requirements from requirements file
requirements_path = Path(__file__).parent / "requirements.txt"
requirements = [
    line.strip()
    for line in requirements_path.read_text().splitlines()
    if line.strip() and not line.startswith('#')
]

setup(
    name="tire-ml-backend",
    version="1.0.0",
    author="Tire ML Team",
    description="Continuous-learning backend for tire tread depth and condition analysis",
    long_description=(Path(__file__).parent / "README.md").read_text(encoding="utf-8"),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["run_server", "pipeline"],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "tire-ml-server=run_server:main",
            "tire-ml-pipeline=pipeline:main",
        ],
    },
    include_package_data=True,
    keywords="machine-learning mlops continuous-learning tire-analysis pytorch fastapi",
    zip_safe=False,
)
