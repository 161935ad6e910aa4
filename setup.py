#!/usr/bin/env python

from setuptools import setup


setup(
    name='tilefits',
    version='1.0.0',
    description='Tiled image and table compression for FITS files',
    long_description='Reads and writes FITS images and binary tables, '
                     'compresses them tile by tile with the Rice, PLIO, '
                     'H-compress and gzip algorithms, and maintains the '
                     'CHECKSUM and DATASUM keywords.',
    license='BSD',
    classifiers=[
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: BSD License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Topic :: Scientific/Engineering :: Astronomy',
        'Topic :: Software Development :: Libraries :: Python Modules'],
    package_dir={'': 'lib'},
    packages=['tilefits', 'tilefits.hdu', 'tilefits.compression',
              'tilefits.scripts', 'tilefits.tests'],
    python_requires='>=3.6',
    install_requires=['numpy'],
    extras_require={'test': ['pytest']},
    entry_points={
        'console_scripts': [
            'fitscheck = tilefits.scripts.fitscheck:main',
            'fitspack = tilefits.scripts.fitspack:main']},
    zip_safe=False
)
