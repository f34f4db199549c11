#!/usr/bin/env python3
"""
Setup script for lemmatag
"""

from pathlib import Path

from setuptools import find_packages, setup

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = ""
if readme_file.exists():
    long_description = readme_file.read_text(encoding='utf-8')

# Read version from lemmatag/__init__.py
version = "1.0.0"
init_file = Path(__file__).parent / "lemmatag" / "__init__.py"
if init_file.exists():
    for line in init_file.read_text(encoding='utf-8').split('\n'):
        if line.startswith('__version__'):
            version = line.split('=')[1].strip().strip('"').strip("'")
            break

BASE_REQUIREMENTS = [
    "numpy>=1.22",
    "scipy>=1.8",
    "scikit-learn>=1.0.0",
    "joblib>=1.1",
    "langcodes>=3.3.0",
    "language-data>=1.1.0",
    "pycountry>=23.12.0",
    "tabulate>=0.9.0",
]

EXTRAS = {}

all_extras = sorted({dep for deps in EXTRAS.values() for dep in deps})
EXTRAS["all"] = all_extras
EXTRAS["dev"] = sorted(
    set(
        all_extras
        + [
            "pytest>=7.0.0",
            "black>=22.0.0",
            "flake8>=4.0.0",
        ]
    )
)

setup(
    name="lemmatag",
    version=version,
    description="Part-of-speech tagging and lemmatization with word classifiers and a constrained CRF",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=BASE_REQUIREMENTS,
    extras_require=EXTRAS,
    entry_points={
        "console_scripts": [
            "lemmatag=lemmatag.__main__:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Text Processing :: Linguistic",
    ],
    keywords="nlp, lemmatization, pos-tagging, crf, svm, morphology",
    zip_safe=False,
)
