from setuptools import setup, find_packages
from pathlib import Path

# Read the contents of README.md for long description
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding='utf-8')

setup(
    name="speciesmap",
    version="0.1.0",

    # Descriptions
    description="Per-state counts and maps of species occurrence records for the contiguous United States",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # License
    license="MIT",

    # Package discovery
    packages=find_packages(exclude=["tests", "tests.*", "docs", "examples"]),

    # Include non-Python files specified in MANIFEST.in
    include_package_data=True,

    # Python version requirement
    python_requires=">=3.9",

    # Core dependencies
    install_requires=[
        "pandas>=1.5.0",
        "numpy>=1.21.0",
        "matplotlib>=3.5.0",
        "seaborn>=0.11.0",
        "geopandas>=0.14.0",
        "shapely>=2.0.0",
        "pyproj>=3.3.0",
        "pyogrio>=0.7.0",
        "pyyaml>=6.0",
    ],

    # Optional dependencies for specific features
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=3.0.0",
        ],
    },

    # Command-line interface
    entry_points={
        'console_scripts': [
            'speciesmap=speciesmap.cli:main',
        ],
    },

    # PyPI classifiers
    classifiers=[
        # Development status
        "Development Status :: 3 - Alpha",

        # Intended audience
        "Intended Audience :: Science/Research",

        # Topic areas
        "Topic :: Scientific/Engineering :: GIS",
        "Topic :: Scientific/Engineering :: Visualization",

        # License
        "License :: OSI Approved :: MIT License",

        # Supported Python versions
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",

        # Operating systems
        "Operating System :: OS Independent",

        # Other
        "Natural Language :: English",
    ],

    # Keywords for PyPI search
    keywords=[
        "biodiversity",
        "GBIF",
        "occurrence records",
        "species distribution",
        "spatial join",
        "choropleth",
        "geopandas",
    ],

    # Minimum setuptools version
    setup_requires=["setuptools>=45.0"],

    # Specify that this package is zip-safe (or not)
    zip_safe=False,
)
