#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""The setup script."""

from setuptools import setup, find_packages

with open('README.rst') as readme_file:
    readme = readme_file.read()

with open('requirements.txt') as r:
    requirements = [line.strip() for line in r if line.strip()]

test_requirements = ['pytest', ]

setup(
    name='agentbaker',
    version='0.1.0',
    description='Render the custom data and CSE command of AKS agent nodes',
    long_description=readme,
    long_description_content_type='text/x-rst',
    packages=find_packages(include=['agentbaker', 'agentbaker.*']),
    package_data={
        'agentbaker': ['data/*.yml'],
        'agentbaker.provision': ['templates/*/*.j2'],
    },
    python_requires='>=3.9',
    install_requires=requirements,
    tests_require=test_requirements,
    extras_require={'test': test_requirements},
    entry_points={
        'console_scripts': [
            'agentbaker=agentbaker.agentbaker:main',
        ],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'Environment :: Console',
        'Topic :: System :: Systems Administration',
    ],
)
