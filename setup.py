"""Setup script for the LaTeX expression preservation pipeline."""

from setuptools import setup, find_packages

setup(
    name="latex-preservation",
    version="1.0.0",
    description="Source-to-render LaTeX expression preservation and reconstruction",
    author="Data Process Team",
    python_requires=">=3.9",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "pyyaml>=6.0",
        "tqdm>=4.66.0",
        "beautifulsoup4>=4.12.0",
    ],
    extras_require={
        "dev": ["pytest>=7.0.0", "black>=23.0.0", "isort>=5.12.0"],
    },
)
