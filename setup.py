from setuptools import setup, find_namespace_packages

setup(
    name="imgpin",
    version="0.1.0",
    packages=find_namespace_packages(where="src", include=["imgpin*"]),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0",
        "pyyaml>=6.0",
        "click>=8.0",
        "python-dotenv>=1.0",
        "kubernetes>=28.0",
        "urllib3>=1.26",
        "tldextract>=5.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "echo-image-digest=imgpin.CLI.main:main",
        ],
    },
)
