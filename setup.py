import setuptools


with open("README.md", "r") as fh:
    long_description = fh.read()

setuptools.setup(
    name="genefam",
    version="0.1.0",
    description="gene family size evolution under a birth-death process with "
    "measurement error",
    long_description=long_description,
    long_description_content_type="text/markdown",
    entry_points={"console_scripts": ["genefam=genefam.cli:main"]},
    packages=["genefam"],
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: GNU General Public License (GPL)",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.7",
    install_requires=[
        "ete3",
        "numpy",
        "pandas",
        "scipy",
        "six",
    ],
    extras_require={"test": ["pytest"]},
)
