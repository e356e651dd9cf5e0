import os
from netfarm import __version__
from setuptools import setup, find_packages

BASE = os.path.dirname(__file__)
with open(os.path.join(BASE, 'README.md'), encoding='utf-8') as fh:
    long_description = fh.read()


setup(
    name='netfarm',
    version=__version__,
    description="Farms points from unused network bandwidth",
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords="network bandwidth points",
    license='MIT',
    python_requires='>=3.10',
    packages=find_packages(exclude=('tests', 'tests.*')),
    zip_safe=False,
    entry_points={
        'console_scripts': [
            'netfarm=netfarm.cli:main',
        ],
    },
    install_requires=[
        'aiohttp>=3.8',
        'appdirs>=1.4.3',
        'distro>=1.4.0',
        'prometheus_client>=0.7.1',
        'psutil>=5.6',
        'pyyaml>=5.3.1',
    ],
    extras_require={
        'lint': [
            'pylint>=2.10.0'
        ],
        'test': [
            'coverage',
        ],
    },
    classifiers=[
        'Framework :: AsyncIO',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
        'Topic :: Internet',
        'Topic :: System :: Networking :: Monitoring',
        'Topic :: Utilities',
    ],
)
