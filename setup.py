import setuptools
from setuptools import setup

install_deps = [
    'numpy>=1.22.0',
    'scipy>=1.7',
    'scikit-learn',
    'tqdm',
    'torch>=1.6',
    'numba',
    'psutil'
]

test_deps = [
    'pytest'
]

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name="energysort",
    version="0.1.0",
    license="BSD",
    description="automated spike sorting by interface-energy cluster merging",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(include=['energysort', 'energysort.*']),
    install_requires=install_deps,
    tests_require=test_deps,
    extras_require={
        'test': test_deps,
    },
    include_package_data=True,
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
