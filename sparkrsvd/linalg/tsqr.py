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
Tall-and-skinny QR factorization with a reduction tree.

Every block of the input is factorized locally. The R factors are then
stacked ``fanIn`` at a time and factorized again, level after level, until a
single R remains. Each node of the tree keeps its Q factor; walking the tree
back down from the root multiplies them together so that every leaf ends up
with its rows of the global Q. No task ever holds more than ``fanIn`` R
factors, or one block of the input.
"""

from math import ceil
from typing import Any, Iterable, List, Tuple

import numpy as np

from sparkrsvd.collection import PartitionedCollection
from sparkrsvd.errors import DimensionMismatchException, IllegalArgumentException
from sparkrsvd.linalg import qrPositive
from sparkrsvd.linalg.distributed import SkinnyBlockMatrix, _BlockPartitionFunc
from sparkrsvd.logger import RsvdLogger


__all__ = ["tsqr"]

logger = RsvdLogger.getLogger(__name__)

# A tree node: its Q factor and, for each child, its index and number of rows in Q.
Node = Tuple[np.ndarray, Tuple[Tuple[int, int], ...]]


def _factorNode(children: List[Tuple[int, np.ndarray]]) -> Tuple[Node, np.ndarray]:
    children = sorted(children, key=lambda child: child[0])
    q, r = qrPositive(np.vstack([rFactor for _, rFactor in children]))
    extents = tuple((index, rFactor.shape[0]) for index, rFactor in children)
    return (q, extents), r


def _pushDown(
    kv: Tuple[int, Tuple[List[Node], List[np.ndarray]]]
) -> Iterable[Tuple[int, np.ndarray]]:
    _, (nodes, multipliers) = kv
    q, extents = nodes[0]
    multiplier = multipliers[0]
    offset = 0
    for index, numRows in extents:
        yield index, q[offset : offset + numRows] @ multiplier
        offset += numRows


def tsqr(matrix: SkinnyBlockMatrix, fanIn: int = 4) -> Tuple[SkinnyBlockMatrix, np.ndarray]:
    """
    Computes ``matrix = Q @ R`` where Q is a SkinnyBlockMatrix with
    orthonormal columns, partitioned like ``matrix``, and R is a local
    upper-triangular matrix with a non-negative diagonal.

    Blocks with fewer rows than columns are allowed; their local R factor is
    rank-deficient and is combined like the others.

    Parameters
    ----------
    matrix : :class:`SkinnyBlockMatrix`
        the matrix to factorize, with at least as many rows as columns.
    fanIn : int, optional, default 4
        number of R factors combined by one node of the reduction tree.

    Returns
    -------
    tuple
        ``(Q, R)``

    Examples
    --------
    >>> from sparkrsvd.collection import LocalEngine
    >>> engine = LocalEngine(2)
    >>> x = np.random.default_rng(0).standard_normal((20, 3))
    >>> q, r = tsqr(SkinnyBlockMatrix.fromLocalMatrix(engine, x, 4), fanIn=2)
    >>> bool(np.allclose(q.toLocalMatrix() @ r, x))
    True
    """
    if fanIn < 2:
        raise IllegalArgumentException(
            error_class="INVALID_CONFIG",
            message_parameters={"reason": "tsqrFanIn must be at least 2 but got %d." % fanIn},
        )
    if matrix.numRows < matrix.numCols:
        raise DimensionMismatchException(
            error_class="DIMENSION_MISMATCH.NOT_TALL",
            message_parameters={
                "operation": "compute a tall-and-skinny QR",
                "numRows": str(matrix.numRows),
                "numCols": str(matrix.numCols),
            },
        )

    engine = matrix.blocks.engine
    leaves = matrix.blocks.mapValues(qrPositive).persist()
    persisted: List[PartitionedCollection] = [leaves]
    try:
        rFactors: PartitionedCollection = leaves.mapValues(lambda qr: qr[1])
        levels: List[PartitionedCollection] = []
        numNodes = matrix.numBlocks
        while numNodes > 1:
            numNodes = int(ceil(numNodes / fanIn))
            numPartitions = max(1, min(rFactors.getNumPartitions(), numNodes))
            nodes = (
                rFactors.map(lambda kv: (kv[0] // fanIn, kv))
                .groupByKey(numPartitions)
                .mapValues(_factorNode)
                .persist()
            )
            persisted.append(nodes)
            levels.append(nodes.mapValues(lambda node: node[0]))
            rFactors = nodes.mapValues(lambda node: node[1])

        root = rFactors.collect()
        assert len(root) == 1, "The reduction tree did not converge to a single node"
        r = root[0][1]
        logger.debug(
            "Reduced %d blocks to one R factor", matrix.numBlocks, depth=len(levels), fanIn=fanIn
        )

        multipliers: PartitionedCollection = engine.parallelize([(0, np.eye(r.shape[0]))], 1)
        for nodes in reversed(levels):
            multipliers = nodes.cogroup(multipliers).flatMap(_pushDown)

        def expand(kv: Tuple[int, Tuple[List[Any], List[np.ndarray]]]) -> np.ndarray:
            (q, _), multiplier = kv[1][0][0], kv[1][1][0]
            return q @ multiplier

        qBlocks = leaves.cogroup(
            multipliers, matrix.numPartitions, _BlockPartitionFunc(matrix.partitionSizeInBlocks)
        ).map(lambda kv: (kv[0], expand(kv)), preservesPartitioning=True)
        q = SkinnyBlockMatrix(
            qBlocks, matrix.numRows, r.shape[0], matrix.blockSize, matrix.partitionSizeInBlocks
        ).persist()
        q.blocks.count()
    finally:
        for collection in persisted:
            collection.unpersist()
    return q, r
