#!/usr/bin/env python3
"""
Setup configuration for ProcOpt
Adaptive processing optimizer for task pipelines
"""

from setuptools import setup, find_packages
import os
from pathlib import Path

# Read the full description
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding='utf-8') if (this_directory / "README.md").exists() else ""

# Read the version from __init__.py file
def get_version():
    """Get the version from __init__.py file"""
    version_file = os.path.join(os.path.dirname(__file__), 'procopt', '__init__.py')
    try:
        with open(version_file, 'r', encoding='utf-8') as f:
            for line in f:
                if line.strip().startswith('__version__'):
                    return line.split('=')[1].strip().strip('"').strip("'")
    except FileNotFoundError:
        pass
    return "1.0.0"

# Essential required dependencies
REQUIRED = [
    "click>=8.0.0",          # CLI interface
    "sqlalchemy>=1.4.0",     # Optimizer history database
    "pyyaml>=6.0",           # Configuration files
    "psutil>=5.9.0",         # System CPU and memory sampling
    "rich>=13.0.0",          # Report tables
]

# Optional dependencies
EXTRAS = {
    'dev': [
        "pytest>=7.0.0",
        "pytest-cov>=4.0.0",
    ]
}

setup(
    # Basic package information
    name="procopt",
    version=get_version(),
    description="Self-tuning cache, scheduler and resource pool manager for task-processing pipelines",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # License and classifications
    license="MIT",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: System :: Monitoring",
        "Topic :: Software Development :: Libraries",
    ],
    keywords="optimizer, cache, scheduler, resource pool, forecasting",

    # Python requirements
    python_requires=">=3.8",

    # Packages
    packages=find_packages(include=['procopt', 'procopt.*']),
    include_package_data=True,

    # Dependencies
    install_requires=REQUIRED,
    extras_require=EXTRAS,

    # Entry points (Console Scripts)
    entry_points={
        'console_scripts': [
            'procopt=procopt.optimizer_cli.main:main',
        ],
    },

    zip_safe=False,
    platforms=["any"],
)
