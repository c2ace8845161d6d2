from setuptools import find_packages, setup

setup(
    name="polymorph",
    version="0.1.0",
    description="Fetch executables on first use and run them from a per-version cache",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.11",
    install_requires=[
        "requests",
        "urllib3",
        "platformdirs",
        "rich",
        "PyYAML",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-mock",
        ],
    },
    entry_points={
        "console_scripts": [
            "polymorph=polymorph.cli:main",
        ],
    },
)
