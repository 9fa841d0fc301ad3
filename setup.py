"""Setup script for the geoface package."""

from setuptools import setup, find_packages
from pathlib import Path

# Read README if it exists
readme_file = Path(__file__).parent / "README.md"
long_description = ""
if readme_file.exists():
    long_description = readme_file.read_text(encoding="utf-8")

setup(
    name="geoface",
    version="0.1.0",
    description="Face enrollment and live recognition with optional location tagging",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="geoface Team",
    packages=find_packages(exclude=["tests*", "docs*"]),
    python_requires=">=3.10,<3.13",
    install_requires=[
        "insightface>=0.7.3",
        "onnxruntime>=1.16.3",  # 1.16.3 for Mac CoreML compatibility
        "opencv-python>=4.9.0,<4.12",  # Lock to 4.11.x for NumPy 1.x compatibility
        "numpy>=1.26.0,<2.0",  # Lock to 1.x for onnxruntime compatibility
        "pandas>=2.2.0",
        "tqdm>=4.66.0",
        "pyyaml>=6.0.0",
        "scipy",
        "httpx>=0.25.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "black",
            "flake8",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            "geoface-enroll=scripts.enroll_images:main",
            "geoface-camera=scripts.run_camera:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
