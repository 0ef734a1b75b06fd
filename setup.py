"""
A setuptools based setup module.

See:
https://packaging.python.org/guides/distributing-packages-using-setuptools/
"""

import setuptools

INSTALL_REQUIRES = [
    "attrs>=22.2",
    "jsonschema",
    "numpy",
    "pyyaml",
    "qrules",
    "scipy",
    "sympy",
    "tqdm",
]

EXTRAS_REQUIRE = {
    "test": [
        "pytest",
    ],
}


def long_description():
    """Parse long description from readme."""
    with open("README.md") as readme_file:
        return readme_file.read()


setuptools.setup(
    name="compwa",
    version="0.1.0",
    author="The ComPWA team",
    maintainer_email="compwa-admin@ep1.rub.de",
    url="https://github.com/ComPWA/ComPWA",
    long_description=long_description(),
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=setuptools.find_packages("src"),
    license="GPLv3 or later",
    python_requires=">=3.9",
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,
    package_data={"compwa.io": ["*.json"]},
    include_package_data=True,
)
