from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="n8n-manager",
    version="0.1.0",
    description="Backup and restore for n8n workflows with folder-aware, idempotent restores",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
    install_requires=[
        "requests>=2.25.0",
        "pyyaml>=5.4.1",
        "click>=8.0.0",
        "python-dateutil>=2.8.1",
        "jsonschema>=3.2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "n8n-manager=n8n_manager.cli:main",
        ],
    },
    include_package_data=True,
    package_data={
        "n8n_manager": ["config-template.yaml"],
    },
)
