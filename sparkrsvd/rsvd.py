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
Randomized truncated SVD (Halko, Martinsson and Tropp, 2011) of a
:class:`BlockMatrix`.
"""

from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from sparkrsvd.conf import RsvdConfig
from sparkrsvd.errors import IllegalArgumentException, NumericalFailureException
from sparkrsvd.linalg import localSvd
from sparkrsvd.linalg.distributed import BlockMatrix, SkinnyBlockMatrix
from sparkrsvd.linalg.tsqr import tsqr
from sparkrsvd.logger import RsvdLogger


__all__ = ["RSVD", "RsvdResult"]

logger = RsvdLogger.getLogger(__name__)


@dataclass(frozen=True)
class RsvdResult:
    """
    Result of :meth:`RSVD.run`.

    :param leftSingularVectors: ``numRows x embeddingDim`` matrix, ``None``
        unless ``computeLeftSingularVectors`` is set.
    :param singularValues: the ``embeddingDim`` singular values, in
        descending order.
    :param rightSingularVectors: ``numCols x embeddingDim`` matrix, ``None``
        unless ``computeRightSingularVectors`` is set.
    """

    leftSingularVectors: Optional[SkinnyBlockMatrix]
    singularValues: np.ndarray
    rightSingularVectors: Optional[SkinnyBlockMatrix]


class RSVD:
    """
    Driver of the randomized SVD.

    Starting from a Gaussian random basis, the basis is multiplied by the
    matrix and orthonormalized with :func:`tsqr`, ``powerIter`` more times
    alternating with the transposed matrix. The matrix projected on the last
    pair of bases is small enough to be decomposed locally; its singular
    vectors are then mapped back through the bases.

    Runs are deterministic for a given seed up to floating-point rounding:
    distributed sums are not combined in a fixed order.

    Examples
    --------
    >>> from sparkrsvd.collection import LocalEngine
    >>> engine = LocalEngine(2)
    >>> a = np.diag([5.0, 4.0, 3.0, 2.0, 1.0, 0.5])
    >>> mat = BlockMatrix.fromLocalMatrix(engine, a, blockSize=4)
    >>> conf = RsvdConfig(embeddingDim=2, oversample=4, powerIter=1, blockSize=4)
    >>> result = RSVD.run(mat, conf)
    >>> np.round(result.singularValues, 6).tolist()
    [5.0, 4.0]
    """

    @staticmethod
    def run(matrix: BlockMatrix, config: RsvdConfig) -> RsvdResult:
        """
        Computes the ``config.embeddingDim`` largest singular values of
        ``matrix`` and, depending on the configuration, the associated
        singular vectors.

        Parameters
        ----------
        matrix : :class:`BlockMatrix`
            the matrix to decompose, partitioned with the block size and
            super-partition sizes of ``config``.
        config : :class:`RsvdConfig`

        Returns
        -------
        :class:`RsvdResult`
        """
        _validate(matrix, config)
        logger.info("Starting randomized SVD", shape=matrix.shape, **config.toDict())

        temporaries: List[SkinnyBlockMatrix] = []

        def multiply(basis: SkinnyBlockMatrix, transpose: bool, iteration: int) -> SkinnyBlockMatrix:
            name = "transposeMultiply" if transpose else "multiply"
            with logger.stage(name, iteration=iteration):
                if transpose:
                    product = matrix.transposeMultiply(basis).persist()
                else:
                    product = matrix.multiply(basis).persist()
                temporaries.append(product)
                if not product.isFinite():
                    raise NumericalFailureException(
                        error_class="NON_FINITE_VALUES", message_parameters={"stage": name}
                    )
            return product

        def orthonormalize(product: SkinnyBlockMatrix, iteration: int) -> SkinnyBlockMatrix:
            with logger.stage("tsqr", iteration=iteration):
                q, _ = tsqr(product, config.tsqrFanIn)
            temporaries.append(q)
            return q

        try:
            omega = SkinnyBlockMatrix.randomNormal(
                matrix.engine,
                matrix.numCols,
                config.numColumns,
                config.blockSize,
                config.partitionWidthInBlocks,
                config.seed,
            )
            q = orthonormalize(multiply(omega, False, 0), 0)
            for iteration in range(1, config.powerIter + 1):
                v = orthonormalize(multiply(q, True, iteration), iteration)
                q = orthonormalize(multiply(v, False, iteration), iteration)

            # A ~ Q Q^T A = Q (A^T Q)^T = Q R^T Qz^T
            z = multiply(q, True, config.powerIter + 1)
            with logger.stage("tsqr", iteration=config.powerIter + 1):
                qz, rz = tsqr(z, config.tsqrFanIn)
            temporaries.append(qz)

            with logger.stage("svd"):
                u, s, v = localSvd(rz.T, config.embeddingDim)

            left = right = None
            if config.computeLeftSingularVectors:
                left = q.multiplyByLocal(u).persist()
                left.blocks.count()
            if config.computeRightSingularVectors:
                right = qz.multiplyByLocal(v).persist()
                right.blocks.count()
        finally:
            for temporary in temporaries:
                temporary.unpersist()

        logger.info("Finished randomized SVD", singularValues=s.tolist())
        return RsvdResult(left, s, right)


def _validate(matrix: BlockMatrix, config: RsvdConfig) -> None:
    def fail(reason: str) -> None:
        raise IllegalArgumentException(
            error_class="INVALID_CONFIG", message_parameters={"reason": reason}
        )

    if config.numColumns > min(matrix.numRows, matrix.numCols):
        fail(
            "embeddingDim + oversample = %d exceeds the smallest dimension of a %d x %d matrix."
            % (config.numColumns, matrix.numRows, matrix.numCols)
        )
    for name in ("blockSize", "partitionHeightInBlocks", "partitionWidthInBlocks"):
        expected, actual = getattr(config, name), getattr(matrix, name)
        if expected != actual:
            fail("%s is %d but the matrix was built with %d." % (name, expected, actual))


def _test() -> None:
    import doctest
    import sys
    import sparkrsvd.rsvd

    globs = sparkrsvd.rsvd.__dict__.copy()
    (failure_count, test_count) = doctest.testmod(
        sparkrsvd.rsvd, globs=globs, optionflags=doctest.ELLIPSIS
    )
    if failure_count:
        sys.exit(-1)


if __name__ == "__main__":
    _test()
