from setuptools import setup, find_packages
from pathlib import Path

# Read the README file for the long description
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

setup(
    name="readshelf",
    version="0.1.0",
    description="A personal e-book library server for PDF and EPUB books",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["readshelf", "readshelf.*"]),
    entry_points={
        "console_scripts": [
            "readshelf=readshelf.cli:app"
        ],
    },
    install_requires=[
        # Core dependencies
        "typer>=0.9.0",
        "rich>=13.0.0",
        "lxml>=4.9.0",
        "sqlalchemy>=2.0.0",
        "httpx>=0.24.0",
        # Web server
        "fastapi>=0.100.0",
        "pydantic>=2.0.0",
        "python-multipart>=0.0.6",  # Form and file uploads
        "uvicorn>=0.23.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
        ]
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX",
        "Development Status :: 3 - Alpha",
        "Intended Audience :: End Users/Desktop",
        "Framework :: FastAPI",
    ],
    python_requires='>=3.9',
)
