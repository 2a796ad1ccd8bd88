# setup.py
from setuptools import setup, find_packages

setup(
    name="kb_scout",
    version="0.1.0",
    description="Template-driven, authentication-aware crawler for knowledge-base ingestion",
    packages=find_packages(exclude=("tests", "tests.*")),
    package_data={"kb_scout.report": ["templates/*.j2"]},
    install_requires=[
        "aiohttp>=3.9",
        "beautifulsoup4>=4.12",
        "soupsieve>=2.5",
        "lxml>=5.0",
        "pydantic>=2.5",
        "PyYAML>=6.0",
        "click>=8.1",
        "Jinja2>=3.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "kb-scout=kb_scout.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
