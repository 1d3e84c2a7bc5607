"""
Setup script for the biolog-router log classification and routing service.
"""

from setuptools import setup, find_packages

setup(
    name="biolog-router",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    package_data={"biolog_router.rules": ["default_rules.yaml"]},
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "pyyaml>=6.0.1",
        "requests>=2.31.0",
        "fastapi>=0.104.0",
        "uvicorn>=0.24.0",
        "pydantic>=2.4.0",
        "pydantic-settings>=2.0.0",
        "loguru>=0.7.2",
        "python-dotenv>=1.0.0",
        "click>=8.1.0",
        "backoff>=2.2.1",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "httpx>=0.24.0",
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.0.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "biolog-router=biolog_router.cli:main",
        ],
    },
    author="DIER Team",
    author_email="team@dier.org",
    description="Classifies, masks and routes bio-pharma system logs to tiered security and compliance destinations",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Information Technology",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Security",
        "Topic :: System :: Logging",
    ],
)
