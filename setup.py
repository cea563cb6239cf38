#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
from setuptools import setup

scriptPath = os.path.abspath( os.path.dirname( __file__ ) )
with open( os.path.join( scriptPath, 'README.md' ), encoding = 'utf-8' ) as file:
    readmeContents = file.read()

setup(
    name             = 'tarmount',
    version          = '0.1.0',

    description      = 'Read-Only Inode-Based FUSE Mount for TAR Archives',
    license          = 'MIT',
    classifiers      = [ 'License :: OSI Approved :: MIT License',
                         'Development Status :: 3 - Alpha',
                         'Natural Language :: English',
                         'Operating System :: MacOS',
                         'Operating System :: POSIX :: Linux',
                         'Programming Language :: Python :: 3',
                         'Programming Language :: Python :: 3.9',
                         'Programming Language :: Python :: 3.10',
                         'Programming Language :: Python :: 3.11',
                         'Programming Language :: Python :: 3.12',
                         'Topic :: System :: Archiving',
                         'Topic :: System :: Filesystems' ],

    long_description = readmeContents,
    long_description_content_type = 'text/markdown',

    python_requires  = '>=3.9',
    packages         = [ 'tarmount', 'tarmountcore' ],
    install_requires = [
        'mfusepy',
        'rich',
    ],
    extras_require   = {
        'bash-completion' : [ 'argcomplete' ],
        'test'            : [ 'pytest>=8.2' ],
    },
    entry_points = { 'console_scripts': [ 'tarmount=tarmount.cli:main' ] }
)
