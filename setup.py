from setuptools import setup, find_packages

setup(
    name="oss-store",
    version="0.1.0",
    description="Pluggable object storage over IPFS and S3",
    author="Your Name",
    author_email="your.email@example.com",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    install_requires=[
        "requests>=2.25.0",  # kubo HTTP RPC API
        "urllib3>=1.26.0",  # stream read errors not wrapped by requests
        "multiaddr>=0.0.9",  # peer and API address parsing
        "mmh3>=4.0.0",  # MurmurHash for staged file checksums (incremental hasher)
        "fsspec>=2021.6.0",
        "s3fs>=2021.6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=6.0.0",
            "black>=21.5b2",
            "pylint>=2.8.0",
        ],
    },
    python_requires=">=3.8",
)
