from setuptools import setup, find_packages

with open("README.md", "r", encoding='utf-8') as fh:
    long_description = fh.read()

setup(
    name="python-ldap-adc",
    version="1.0.0",
    packages=find_packages(),
    include_package_data=True,
    package_data={'ldap_adc': ["py.typed"]},
    python_requires=">=3.10",
    install_requires=[
        'python-ldap',
        'case-insensitive-dictionary',
        'ldap-filter',
        'pydantic>=2',
    ],
    extras_require={
        'test': ['pytest'],
    },
    author="Caltech IMSS ADS",
    author_email="cmalek@caltech.edu",
    description="A typed Active Directory client built on python-ldap, with an in-memory directory for tests.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords=['ldap', 'active directory'],
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: BSD License',
        'Operating System :: OS Independent',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: System :: Systems Administration :: Authentication/Directory :: LDAP',
    ],
)
