# -*- coding: utf-8 -*-
"""
package setup

@author: C Heiser
"""
import io
import os
import setuptools
from setuptools import setup


def read(fname):
    with io.open(os.path.join(os.path.dirname(__file__), fname), encoding="utf-8") as f:
        return f.read()


def get_version():
    version = {}
    exec(read(os.path.join("consensus_nmf", "_version.py")), version)
    return version["__version__"]


if __name__ == "__main__":
    setup(
        name="consensus-nmf",
        version=get_version(),
        description="Consensus Non-Negative Matrix Factorization pipeline for scRNA-seq data",
        long_description=read("README.md"),
        long_description_content_type="text/markdown",
        author="Cody Heiser",
        author_email="codyheiser49@gmail.com",
        url="https://github.com/codyheiser/cNMF",
        install_requires=read("requirements.txt").splitlines(),
        extras_require={"test": ["pytest>=7"]},
        packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
        classifiers=[
            "Programming Language :: Python :: 3",
            "Operating System :: OS Independent",
            "Intended Audience :: Developers",
            "Intended Audience :: Science/Research",
            "License :: OSI Approved :: MIT License",
            "Topic :: Scientific/Engineering",
        ],
        python_requires=">=3.8",
        entry_points={
            "console_scripts": [
                "cnmf = consensus_nmf.cnmf:main",
                "cnmf_p = consensus_nmf.cnmf_parallel:main",
            ]
        },
    )
