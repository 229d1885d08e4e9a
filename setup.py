from setuptools import setup, find_packages

setup(
    name="checkpointtool",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "xxhash>=3.0",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        'console_scripts': [
            'checkpointtool=checkpointtool.cli:main',
        ],
    },
)
