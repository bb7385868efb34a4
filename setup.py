from setuptools import setup, find_packages

setup(
    name="lienx",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pyyaml",
        "pydantic",
        "pymongo",
        "requests",
        "beautifulsoup4",
        "pdfplumber",
        "pypdf",
        "pytesseract",
        "pdf2image",
        "Pillow",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "lienx=lienx.cli:main",
        ],
    },
)
