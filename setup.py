from setuptools import setup, find_packages

setup(
    name="murmur",
    version="0.1.0",
    description="Voice dictation through a local whisper.cpp transcription server",
    author="",
    python_requires=">=3.10",
    packages=find_packages(include=["murmur", "murmur.*"]),
    install_requires=[
        "rich>=12.5.0",
        "pyyaml>=6.0.0",
        "pypubsub>=4.0.3",
        "aiohttp>=3.8.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "murmur=murmur.main:main",
        ],
    },
)
