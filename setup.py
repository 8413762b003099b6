#!/usr/bin/env python3
"""Setup script for the Content Intake Pipeline.

Installs the intake package, its dependencies and the qed-intake command.
"""

from setuptools import setup, find_packages

# Read README
with open('README.md', 'r', encoding='utf-8') as f:
    long_description = f.read()

requirements = [
    'numpy>=1.21.0',
    'pandas>=1.3.0',
    'PyYAML>=5.4.0',
    'requests>=2.25.0',
]

test_requirements = [
    'pytest>=7.0.0',
    'pytest-cov>=3.0.0',
]

setup(
    name='qed-intake',
    version='1.0.0',
    description='Rubric scoring, deduplication and tiered classification of technical content',
    long_description=long_description,
    long_description_content_type='text/markdown',
    packages=find_packages(exclude=['tests', 'tests.*']),
    include_package_data=True,
    install_requires=requirements,
    extras_require={
        'test': test_requirements,
        'dev': test_requirements + [
            'flake8>=4.0.0',
            'black>=22.0.0',
        ],
    },
    python_requires='>=3.8',
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Topic :: Text Processing',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
    ],
    entry_points={
        'console_scripts': [
            'qed-intake=intake.cli:main',
        ],
    },
)
