import setuptools

setuptools.setup(
    name="aiopair",
    version="0.1.0",
    description="Offer/answer and trickle ICE negotiation between two local endpoints",
    license="BSD-3-Clause",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Web Environment",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
    package_dir={"": "src"},
    packages=["aiopair"],
    python_requires=">=3.10",
    install_requires=[
        "aioice>=0.10.1,<1.0.0",
        "cryptography>=44.0.0",
        "pyee>=13.0.0",
    ],
    extras_require={
        "test": [
            "coverage[toml]>=7.2.2",
            "pytest",
        ],
    },
)
