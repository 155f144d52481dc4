#!/usr/bin/env python

import os
import re
from setuptools import setup

version_file = os.path.join('formspool', '_version.py')
with open(version_file, 'rb') as f:
    version_data = f.read().strip().decode('ascii')

version_re = re.compile(r'((?:\d+)\.(?:\d+)\.(?:\d+))')
version = version_re.search(version_data).group(0)

tests_require = [
    'pytest',
    'pytest-cov',
    'PyYAML'
]

setup(name='formspool',
      version=version,
      description='A streaming multipart/form-data parser that spools parts to disk',
      author='Andrew Dunham',
      license='Apache',
      platforms='any',
      zip_safe=False,
      install_requires=[
          'click',
      ],
      tests_require=tests_require,
      extras_require={
          'test': tests_require,
      },
      packages=[
          'formspool',
      ],
      python_requires='>=3.8',
      classifiers=[
        'Development Status :: 3 - Alpha',
        'Environment :: Web Environment',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3 :: Only',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Software Development :: Libraries :: Python Modules'
      ],
     )
