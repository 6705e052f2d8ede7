#!/usr/bin/env python3
"""
Setup script for material-transfer.
"""

from pathlib import Path

from setuptools import find_packages, setup


def read_version():
    """Read __version__ from the package without importing it."""
    init_file = Path(__file__).parent / "material_transfer" / "__init__.py"
    for line in init_file.read_text(encoding="utf-8").splitlines():
        if line.startswith("__version__"):
            return line.split("=", 1)[1].strip().strip("\"'")
    raise RuntimeError(f"__version__ not found in {init_file}")


if __name__ == "__main__":
    setup(
        name="material-transfer",
        version=read_version(),
        description="Mask geometry and resilient Gemini generation for material transfer",
        packages=find_packages(include=["material_transfer", "material_transfer.*"]),
        python_requires=">=3.11",
        install_requires=[
            "google-genai>=1.30",
            "httpx>=0.27",
            "numpy>=1.26",
            "opencv-python>=4.8",
            "pillow>=10.0",
            "pydantic>=2.6",
            "rich>=13.0",
            "typer>=0.12",
        ],
        extras_require={
            "test": ["pytest>=8.0"],
        },
        entry_points={
            "console_scripts": [
                "material-transfer=material_transfer.cli:app",
            ],
        },
    )
