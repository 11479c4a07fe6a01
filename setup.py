#!/usr/bin/env python

#
# Licensed to the Apache Software Foundation (ASF) under one or more
# contributor license agreements.  See the NOTICE file distributed with
# this work for additional information regarding copyright ownership.
# The ASF licenses this file to You under the Apache License, Version 2.0
# (the "License"); you may not use this file except in compliance with
# the License.  You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import os
import sys
from setuptools import setup

if sys.version_info < (3, 8):
    print("Python versions prior to 3.8 are not supported for spark-rsvd.", file=sys.stderr)
    sys.exit(-1)

try:
    exec(open(os.path.join(os.path.dirname(os.path.abspath(__file__)),
                           "sparkrsvd", "version.py")).read())
except IOError:
    print("Failed to load the spark-rsvd version file for packaging.", file=sys.stderr)
    sys.exit(-1)
VERSION = __version__  # noqa: F821

_minimum_numpy_version = "1.21"
_minimum_scipy_version = "1.7"
_minimum_pyspark_version = "3.4"

long_description = "Randomized truncated SVD of very large sparse matrices on Apache Spark"
if os.path.isfile("README.md"):
    with open("README.md") as f:
        long_description = f.read()

setup(
    name="spark-rsvd",
    version=VERSION,
    description="Randomized SVD of huge sparse matrices with a tree-reduced TSQR on Spark",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=[
        "sparkrsvd",
        "sparkrsvd.errors",
        "sparkrsvd.linalg",
        "sparkrsvd.logger",
        "sparkrsvd.tests",
    ],
    license="http://www.apache.org/licenses/LICENSE-2.0",
    install_requires=[
        "pyspark>=%s" % _minimum_pyspark_version,
        "numpy>=%s" % _minimum_numpy_version,
        "scipy>=%s" % _minimum_scipy_version,
    ],
    extras_require={
        "test": ["pytest"],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: Implementation :: CPython",
        "Topic :: Scientific/Engineering :: Mathematics",
    ],
)
