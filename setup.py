"""Setup configuration for calendar-sheet-sync"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="calendar-sheet-sync",
    version="1.0.0",
    author="lory7c",
    author_email="",
    description="Google 日历与飞书多维表格双向同步服务",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main"],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Office/Business :: Scheduling",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    install_requires=[
        "lark-oapi>=1.2.0",
        "loguru>=0.7.0",
        "redis>=4.5.0",
        "requests>=2.28.0",
        "PyMySQL>=1.0.0",
        "DBUtils>=3.0.0",
        "google-api-python-client>=2.100.0",
        "google-auth>=2.20.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "calendar-sheet-sync=main:main",
        ],
    },
)
