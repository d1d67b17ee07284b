from setuptools import setup, find_packages

setup(
    name='mr-automator',
    version='1.0',
    scripts=['bin/mr-automator'],
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires='>=3.8',
    install_requires=[
        'requests',
        'PyYAML',
        'prettytable',
    ],
    extras_require={
        'test': ['pytest'],
    },
)
