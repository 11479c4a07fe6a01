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
Randomized SVD of a random sparse square matrix. The RSVD parameters are
read from the ``spark.rsvd.*`` keys of the Spark configuration, e.g.::

    spark-submit --conf spark.rsvd.embeddingDim=50 rsvd_example.py local[4] 100000 500000
"""
import sys

import numpy as np
from pyspark import SparkConf, SparkContext

from sparkrsvd import RSVD, BlockMatrix, RsvdConfig


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: rsvd_example <master> [<numRows>] [<nnz>]", file=sys.stderr)
        sys.exit(-1)
    conf = (
        SparkConf()
        .setIfMissing("spark.rsvd.embeddingDim", "20")
        .setIfMissing("spark.rsvd.oversample", "10")
        .setIfMissing("spark.rsvd.blockSize", "2000")
    )
    sc = SparkContext(sys.argv[1], "PythonRSVD", conf=conf)
    numRows = int(sys.argv[2]) if len(sys.argv) > 2 else 10000
    nnz = int(sys.argv[3]) if len(sys.argv) > 3 else 2 * numRows
    rsvdConf = RsvdConfig.fromSparkConf(sc.getConf())

    print("Running RSVD on a %d x %d matrix with %d entries: %s" % (
        numRows, numRows, nnz, rsvdConf))

    slices = sc.defaultParallelism

    def entries(index):
        rng = np.random.default_rng([rsvdConf.seed, index])
        size = nnz // slices + (1 if index < nnz % slices else 0)
        rows = rng.integers(0, numRows, size)
        cols = rng.integers(0, numRows, size)
        return zip(rows.tolist(), cols.tolist(), rng.standard_normal(size).tolist())

    coordinates = sc.parallelize(range(slices), slices).flatMap(entries)
    matrix = BlockMatrix.fromCoordinates(
        coordinates,
        numRows,
        numRows,
        rsvdConf.blockSize,
        rsvdConf.partitionHeightInBlocks,
        rsvdConf.partitionWidthInBlocks,
    ).persist()

    result = RSVD.run(matrix, rsvdConf)
    print("Singular values:")
    for i, value in enumerate(result.singularValues):
        print("%4d: %f" % (i, value))

    sc.stop()
