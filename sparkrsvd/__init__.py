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
#

"""
Randomized truncated SVD of very large sparse matrices on Spark.

Public classes:

  - :class:`BlockMatrix`:
      Distributed sparse matrix cut into blocks and super-partitions.
  - :class:`SkinnyBlockMatrix`:
      Distributed dense matrix with few columns.
  - :class:`RsvdConfig`:
      Parameters of a run.
  - :class:`RSVD`:
      Entry point, returns a :class:`RsvdResult`.
  - :class:`SparkEngine` and :class:`LocalEngine`:
      Run the computation on a SparkContext or on local threads.
"""

from sparkrsvd.version import __version__  # noqa: F401
from sparkrsvd.collection import (
    LocalCollection,
    LocalEngine,
    PartitionedCollection,
    RDDCollection,
    SparkEngine,
)
from sparkrsvd.conf import RsvdConfig
from sparkrsvd.linalg.distributed import BlockMatrix, SkinnyBlockMatrix
from sparkrsvd.linalg.tsqr import tsqr
from sparkrsvd.rsvd import RSVD, RsvdResult

__all__ = [
    "BlockMatrix",
    "SkinnyBlockMatrix",
    "RsvdConfig",
    "RSVD",
    "RsvdResult",
    "tsqr",
    "PartitionedCollection",
    "RDDCollection",
    "LocalCollection",
    "SparkEngine",
    "LocalEngine",
]
