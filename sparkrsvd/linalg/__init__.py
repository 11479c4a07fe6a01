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
Local linear algebra used inside the tasks of the RSVD engine. Dense
tiles are NumPy arrays, sparse tiles are ``scipy.sparse.csr_matrix``
instances.
"""

from typing import Tuple, Union

import numpy as np
import scipy.sparse


__all__ = ["MatrixBlock", "qrPositive", "localSvd", "blockHeight", "numBlocks"]


BlockData = Union[np.ndarray, scipy.sparse.csr_matrix]


def numBlocks(size: int, blockSize: int) -> int:
    """
    Number of blocks of ``blockSize`` needed to cover ``size`` rows.

    >>> numBlocks(10, 4)
    3
    >>> numBlocks(8, 4)
    2
    """
    return (size + blockSize - 1) // blockSize


def blockHeight(blockIndex: int, size: int, blockSize: int) -> int:
    """
    Number of rows of the given block; only the last block may be shorter.

    >>> [blockHeight(i, 10, 4) for i in range(3)]
    [4, 4, 2]
    """
    return min(blockSize, size - blockIndex * blockSize)


class MatrixBlock:
    """
    An immutable tile of a :class:`BlockMatrix`, located at block row
    ``rowIndex`` and block column ``colIndex``. The tile is stored dense
    (``numpy.ndarray``) or sparse (``scipy.sparse.csr_matrix``).

    >>> block = MatrixBlock(0, 1, np.array([[1.0, 0.0], [0.0, 2.0]]))
    >>> block.dot(np.ones((2, 1))).ravel().tolist()
    [1.0, 2.0]
    >>> block.isSparse
    False
    """

    __slots__ = ("rowIndex", "colIndex", "data")

    def __init__(self, rowIndex: int, colIndex: int, data: BlockData):
        self.rowIndex = rowIndex
        self.colIndex = colIndex
        if scipy.sparse.issparse(data):
            self.data = scipy.sparse.csr_matrix(data, dtype=np.float64)
        else:
            self.data = np.asarray(data, dtype=np.float64)
            if self.data.ndim != 2:
                raise ValueError("A block must be 2-dimensional but got %d" % self.data.ndim)

    def __getstate__(self) -> Tuple[int, int, BlockData]:
        return self.rowIndex, self.colIndex, self.data

    def __setstate__(self, state: Tuple[int, int, BlockData]) -> None:
        self.rowIndex, self.colIndex, self.data = state

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape

    @property
    def isSparse(self) -> bool:
        return scipy.sparse.issparse(self.data)

    @property
    def nnz(self) -> int:
        if self.isSparse:
            return self.data.nnz
        return int(np.count_nonzero(self.data))

    def dot(self, dense: np.ndarray) -> np.ndarray:
        """Returns ``block @ dense`` as a dense array."""
        return np.asarray(self.data @ dense)

    def transposeDot(self, dense: np.ndarray) -> np.ndarray:
        """Returns ``block.T @ dense`` as a dense array."""
        return np.asarray(self.data.T @ dense)

    def transpose(self) -> "MatrixBlock":
        data = self.data.T.tocsr() if self.isSparse else self.data.T
        return MatrixBlock(self.colIndex, self.rowIndex, data)

    def toArray(self) -> np.ndarray:
        if self.isSparse:
            return self.data.toarray()
        return self.data

    def __repr__(self) -> str:
        kind = "sparse" if self.isSparse else "dense"
        return "MatrixBlock(%d, %d, %s %dx%d)" % (
            self.rowIndex,
            self.colIndex,
            kind,
            self.shape[0],
            self.shape[1],
        )


def qrPositive(a: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Reduced QR factorization whose R factor has a non-negative diagonal.

    A matrix with fewer rows than columns gives a rank-deficient
    ``(rows, cols)`` R and a square Q.

    >>> q, r = qrPositive(np.array([[-3.0, 1.0], [-4.0, 2.0]]))
    >>> bool(np.all(np.diag(r) >= 0))
    True
    >>> bool(np.allclose(q @ r, [[-3.0, 1.0], [-4.0, 2.0]]))
    True
    """
    q, r = np.linalg.qr(a, mode="reduced")
    signs = np.sign(np.diag(r))
    signs[signs == 0] = 1.0
    return q * signs, r * signs[:, np.newaxis]


def localSvd(b: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Truncated SVD of a small dense matrix: ``(U[:, :k], s[:k], V[:, :k])``
    with singular values in descending order.
    """
    u, s, vt = np.linalg.svd(b, full_matrices=False)
    return u[:, :k], s[:k], vt[:k].T


def _test() -> None:
    import doctest
    import sys
    import sparkrsvd.linalg

    globs = sparkrsvd.linalg.__dict__.copy()
    (failure_count, test_count) = doctest.testmod(
        sparkrsvd.linalg, globs=globs, optionflags=doctest.ELLIPSIS
    )
    if failure_count:
        sys.exit(-1)


if __name__ == "__main__":
    _test()
