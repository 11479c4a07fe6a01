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
Distributed matrices of the RSVD engine.

A :class:`BlockMatrix` is a sparse matrix cut into square blocks; blocks are
grouped into super-partitions of ``partitionHeightInBlocks`` x
``partitionWidthInBlocks`` blocks which are the unit of work of a
multiplication. A :class:`SkinnyBlockMatrix` is a dense matrix with few
columns cut into horizontal blocks of ``blockSize`` rows; its partitions hold
``partitionSizeInBlocks`` consecutive blocks so that they line up with the
super-partitions of a BlockMatrix.

Sums of partial products are combined in an unspecified order, so results
are reproducible up to floating-point rounding, not bit for bit.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import numpy as np
import scipy.sparse

from pyspark import RDD

from sparkrsvd.collection import Engine, PartitionedCollection, toCollection
from sparkrsvd.errors import DimensionMismatchException, IndexOutOfBoundsException
from sparkrsvd.linalg import MatrixBlock, blockHeight, numBlocks


__all__ = ["BlockMatrix", "SkinnyBlockMatrix"]


@dataclass(frozen=True)
class _BlockPartitionFunc:
    """Places block ``i`` on partition ``i // partitionSizeInBlocks``."""

    partitionSizeInBlocks: int

    def __call__(self, blockIndex: int) -> int:
        return blockIndex // self.partitionSizeInBlocks


@dataclass(frozen=True)
class _GridPartitionFunc:
    """Places super-partition ``(row, col)`` on partition ``row * numColPartitions + col``."""

    numColPartitions: int

    def __call__(self, key: Tuple[int, int]) -> int:
        return key[0] * self.numColPartitions + key[1]


def _gaussianBlock(seed: int, blockIndex: int, height: int, numCols: int) -> np.ndarray:
    # One generator per block: the values only depend on (seed, blockIndex).
    sequence = np.random.SeedSequence([seed % 2**64, blockIndex])
    return np.random.default_rng(sequence).standard_normal((height, numCols))


class SkinnyBlockMatrix:
    """
    A distributed dense matrix with many rows and few columns, stored as
    ``(blockIndex, ndarray)`` pairs. Block ``i`` holds rows
    ``[i * blockSize, min((i + 1) * blockSize, numRows))`` and lives on
    partition ``i // partitionSizeInBlocks``.

    :param blocks: a PartitionedCollection or RDD of ``(blockIndex, ndarray)``.
    :param numRows: number of rows.
    :param numCols: number of columns.
    :param blockSize: number of rows of a block.
    :param partitionSizeInBlocks: number of consecutive blocks of a partition.

    >>> from sparkrsvd.collection import LocalEngine
    >>> engine = LocalEngine(2)
    >>> mat = SkinnyBlockMatrix.fromLocalMatrix(engine, np.arange(10.0).reshape(5, 2), 2)
    >>> mat.numRows, mat.numCols, mat.numBlocks
    (5, 2, 3)
    >>> mat.multiplyByLocal(np.array([[1.0], [1.0]])).toLocalMatrix().ravel().tolist()
    [1.0, 5.0, 9.0, 13.0, 17.0]
    """

    def __init__(
        self,
        blocks: Union[RDD, PartitionedCollection],
        numRows: int,
        numCols: int,
        blockSize: int,
        partitionSizeInBlocks: int = 1,
    ):
        self._blocks = toCollection(blocks)
        self._numRows = numRows
        self._numCols = numCols
        self._blockSize = blockSize
        self._partitionSizeInBlocks = partitionSizeInBlocks

    @property
    def blocks(self) -> PartitionedCollection:
        """The ``(blockIndex, ndarray)`` pairs of this matrix."""
        return self._blocks

    @property
    def numRows(self) -> int:
        return self._numRows

    @property
    def numCols(self) -> int:
        return self._numCols

    @property
    def shape(self) -> Tuple[int, int]:
        return self._numRows, self._numCols

    @property
    def blockSize(self) -> int:
        return self._blockSize

    @property
    def partitionSizeInBlocks(self) -> int:
        return self._partitionSizeInBlocks

    @property
    def numBlocks(self) -> int:
        return numBlocks(self._numRows, self._blockSize)

    @property
    def numPartitions(self) -> int:
        return numBlocks(self.numBlocks, self._partitionSizeInBlocks)

    def partitionFunc(self) -> _BlockPartitionFunc:
        return _BlockPartitionFunc(self._partitionSizeInBlocks)

    def _withBlocks(self, blocks: PartitionedCollection, numCols: int) -> "SkinnyBlockMatrix":
        return SkinnyBlockMatrix(
            blocks, self._numRows, numCols, self._blockSize, self._partitionSizeInBlocks
        )

    @classmethod
    def fromLocalMatrix(
        cls,
        engine: Engine,
        matrix: np.ndarray,
        blockSize: int,
        partitionSizeInBlocks: int = 1,
    ) -> "SkinnyBlockMatrix":
        """
        Distributes a dense local matrix.
        """
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.ndim != 2:
            raise ValueError("Expected a 2-dimensional matrix but got %d" % matrix.ndim)
        numRows, numCols = matrix.shape
        count = numBlocks(numRows, blockSize)
        numPartitions = numBlocks(count, partitionSizeInBlocks)
        pairs = [(i, matrix[i * blockSize : (i + 1) * blockSize].copy()) for i in range(count)]
        blocks = engine.parallelize(pairs, numPartitions).partitionBy(
            numPartitions, _BlockPartitionFunc(partitionSizeInBlocks)
        )
        return cls(blocks, numRows, numCols, blockSize, partitionSizeInBlocks)

    @classmethod
    def randomNormal(
        cls,
        engine: Engine,
        numRows: int,
        numCols: int,
        blockSize: int,
        partitionSizeInBlocks: int = 1,
        seed: int = 0,
    ) -> "SkinnyBlockMatrix":
        """
        A matrix of i.i.d. samples from the standard normal distribution.

        Every block is drawn from its own generator seeded with
        ``(seed, blockIndex)``, so an entry has the same value whatever the
        number of partitions or workers.

        >>> from sparkrsvd.collection import LocalEngine
        >>> engine = LocalEngine(2)
        >>> a = SkinnyBlockMatrix.randomNormal(engine, 7, 3, 2, 1, seed=42).toLocalMatrix()
        >>> b = SkinnyBlockMatrix.randomNormal(engine, 7, 3, 2, 4, seed=42).toLocalMatrix()
        >>> bool(np.array_equal(a, b))
        True
        """
        count = numBlocks(numRows, blockSize)
        numPartitions = numBlocks(count, partitionSizeInBlocks)

        def generate(blockIndex: int) -> np.ndarray:
            return _gaussianBlock(seed, blockIndex, blockHeight(blockIndex, numRows, blockSize),
                                  numCols)

        blocks = (
            engine.parallelize([(i, None) for i in range(count)], numPartitions)
            .partitionBy(numPartitions, _BlockPartitionFunc(partitionSizeInBlocks))
            .map(lambda kv: (kv[0], generate(kv[0])), preservesPartitioning=True)
        )
        return cls(blocks, numRows, numCols, blockSize, partitionSizeInBlocks)

    def checkAligned(
        self, numRows: int, blockSize: int, partitionSizeInBlocks: int, operation: str
    ) -> None:
        """
        Raises :class:`DimensionMismatchException` unless this matrix has
        ``numRows`` rows cut in blocks of ``blockSize`` rows grouped
        ``partitionSizeInBlocks`` per partition.
        """
        if self._numRows != numRows:
            raise DimensionMismatchException(
                error_class="DIMENSION_MISMATCH.NUM_ROWS",
                message_parameters={
                    "operation": operation,
                    "expected": str(numRows),
                    "actual": str(self._numRows),
                },
            )
        if self._blockSize != blockSize:
            raise DimensionMismatchException(
                error_class="DIMENSION_MISMATCH.BLOCK_SIZE",
                message_parameters={
                    "operation": operation,
                    "left": str(blockSize),
                    "right": str(self._blockSize),
                },
            )
        if self._partitionSizeInBlocks != partitionSizeInBlocks:
            raise DimensionMismatchException(
                error_class="DIMENSION_MISMATCH.PARTITION_SIZE",
                message_parameters={
                    "operation": operation,
                    "expected": str(partitionSizeInBlocks),
                    "actual": str(self._partitionSizeInBlocks),
                },
            )

    def multiplyByLocal(self, matrix: np.ndarray) -> "SkinnyBlockMatrix":
        """
        Returns ``self @ matrix`` for a small local matrix of
        ``numCols`` rows. Partitioning is preserved.
        """
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.ndim != 2 or matrix.shape[0] != self._numCols:
            raise DimensionMismatchException(
                error_class="DIMENSION_MISMATCH.SHAPE",
                message_parameters={
                    "operation": "multiply by a local matrix",
                    "expected": "(%d, *)" % self._numCols,
                    "actual": str(matrix.shape),
                },
            )
        return self._withBlocks(self._blocks.mapValues(lambda b: b @ matrix), matrix.shape[1])

    def gram(self, other: Optional["SkinnyBlockMatrix"] = None) -> np.ndarray:
        """
        Returns the small local matrix ``self.T @ other`` (``self.T @ self``
        by default), summed with a tree aggregation.
        """
        if other is None:
            pairs = self._blocks.mapValues(lambda b: (b, b))
            otherCols = self._numCols
        else:
            other.checkAligned(self._numRows, self._blockSize, self._partitionSizeInBlocks, "gram")
            pairs = self._blocks.cogroup(
                other.blocks, self.numPartitions, self.partitionFunc()
            ).mapValues(lambda lists: (lists[0][0], lists[1][0]))
            otherCols = other.numCols

        def seqOp(acc: np.ndarray, kv: Tuple[int, Tuple[np.ndarray, np.ndarray]]) -> np.ndarray:
            left, right = kv[1]
            return acc + left.T @ right

        def combOp(x: np.ndarray, y: np.ndarray) -> np.ndarray:
            return x + y

        zero = np.zeros((self._numCols, otherCols))
        return pairs.treeAggregate(zero, seqOp, combOp)

    def isFinite(self) -> bool:
        """Whether no entry is NaN or infinite."""

        def seqOp(acc: bool, kv: Tuple[int, np.ndarray]) -> bool:
            return acc and bool(np.isfinite(kv[1]).all())

        def combOp(x: bool, y: bool) -> bool:
            return x and y

        return self._blocks.treeAggregate(True, seqOp, combOp)

    def toLocalMatrix(self) -> np.ndarray:
        """
        Collects the matrix to the driver as a dense ndarray.
        """
        result = np.zeros((self._numRows, self._numCols))
        for i, block in self._blocks.collect():
            start = i * self._blockSize
            result[start : start + block.shape[0]] = block
        return result

    def toIndexedRows(self) -> PartitionedCollection:
        """
        Returns the rows of the matrix as ``(rowIndex, ndarray)`` pairs.
        """
        blockSize = self._blockSize

        def explode(kv: Tuple[int, np.ndarray]) -> Iterable[Tuple[int, np.ndarray]]:
            i, block = kv
            for r in range(block.shape[0]):
                yield i * blockSize + r, block[r]

        return self._blocks.flatMap(explode)

    def persist(self) -> "SkinnyBlockMatrix":
        self._blocks.persist()
        return self

    def unpersist(self) -> "SkinnyBlockMatrix":
        self._blocks.unpersist()
        return self

    def __repr__(self) -> str:
        return "SkinnyBlockMatrix(%d x %d, blockSize=%d, partitionSizeInBlocks=%d)" % (
            self._numRows,
            self._numCols,
            self._blockSize,
            self._partitionSizeInBlocks,
        )


class BlockMatrix:
    """
    A distributed sparse matrix stored as super-partitions: pairs of
    ``((superPartitionRow, superPartitionCol), tuple of MatrixBlock)``.
    Block ``(i, j)`` belongs to super-partition
    ``(i // partitionHeightInBlocks, j // partitionWidthInBlocks)``; blocks
    without any entry are not stored.

    :param partitions: a PartitionedCollection or RDD of super-partitions.
    :param numRows: number of rows.
    :param numCols: number of columns.
    :param blockSize: height and width of a block.
    :param partitionHeightInBlocks: height of a super-partition, in blocks.
    :param partitionWidthInBlocks: width of a super-partition, in blocks.

    >>> from sparkrsvd.collection import LocalEngine
    >>> engine = LocalEngine(2)
    >>> entries = engine.parallelize([(0, 0, 1.0), (2, 1, 2.0), (2, 1, 3.0)])
    >>> mat = BlockMatrix.fromCoordinates(entries, 3, 2, blockSize=2)
    >>> mat.toLocalMatrix().tolist()
    [[1.0, 0.0], [0.0, 0.0], [0.0, 5.0]]
    """

    def __init__(
        self,
        partitions: Union[RDD, PartitionedCollection],
        numRows: int,
        numCols: int,
        blockSize: int,
        partitionHeightInBlocks: int = 1,
        partitionWidthInBlocks: int = 1,
    ):
        self._partitions = toCollection(partitions)
        self._numRows = numRows
        self._numCols = numCols
        self._blockSize = blockSize
        self._partitionHeightInBlocks = partitionHeightInBlocks
        self._partitionWidthInBlocks = partitionWidthInBlocks

    @property
    def partitions(self) -> PartitionedCollection:
        """The super-partitions of this matrix."""
        return self._partitions

    @property
    def engine(self) -> Engine:
        return self._partitions.engine

    @property
    def numRows(self) -> int:
        return self._numRows

    @property
    def numCols(self) -> int:
        return self._numCols

    @property
    def shape(self) -> Tuple[int, int]:
        return self._numRows, self._numCols

    @property
    def blockSize(self) -> int:
        return self._blockSize

    @property
    def partitionHeightInBlocks(self) -> int:
        return self._partitionHeightInBlocks

    @property
    def partitionWidthInBlocks(self) -> int:
        return self._partitionWidthInBlocks

    @property
    def numRowBlocks(self) -> int:
        return numBlocks(self._numRows, self._blockSize)

    @property
    def numColBlocks(self) -> int:
        return numBlocks(self._numCols, self._blockSize)

    @property
    def numRowPartitions(self) -> int:
        return numBlocks(self.numRowBlocks, self._partitionHeightInBlocks)

    @property
    def numColPartitions(self) -> int:
        return numBlocks(self.numColBlocks, self._partitionWidthInBlocks)

    @staticmethod
    def fromCoordinates(
        entries: Union[RDD, PartitionedCollection],
        numRows: int,
        numCols: int,
        blockSize: int,
        partitionHeightInBlocks: int = 1,
        partitionWidthInBlocks: int = 1,
    ) -> "BlockMatrix":
        """
        Builds a BlockMatrix from ``(row, col, value)`` entries. Entries
        sharing the same coordinates are summed.

        Raises :class:`IndexOutOfBoundsException` if an entry lies outside
        of the ``numRows`` x ``numCols`` matrix.
        """
        entries = toCollection(entries)

        def outOfRange(entry: Tuple[int, int, float]) -> bool:
            row, col = entry[0], entry[1]
            return not (0 <= row < numRows and 0 <= col < numCols)

        invalid = entries.filter(outOfRange).take(1)
        if invalid:
            row, col, _ = invalid[0]
            raise IndexOutOfBoundsException(
                error_class="INDEX_OUT_OF_BOUNDS",
                message_parameters={
                    "row": str(row),
                    "col": str(col),
                    "numRows": str(numRows),
                    "numCols": str(numCols),
                },
            )

        numRowPartitions = numBlocks(numBlocks(numRows, blockSize), partitionHeightInBlocks)
        numColPartitions = numBlocks(numBlocks(numCols, blockSize), partitionWidthInBlocks)
        rowSpan = blockSize * partitionHeightInBlocks
        colSpan = blockSize * partitionWidthInBlocks

        def route(entry: Tuple[int, int, float]) -> Tuple[Tuple[int, int], Tuple[int, int, float]]:
            row, col, value = entry
            return (int(row) // rowSpan, int(col) // colSpan), (int(row), int(col), float(value))

        def buildBlocks(
            kv: Tuple[Tuple[int, int], List[Tuple[int, int, float]]]
        ) -> Tuple[Tuple[int, int], Tuple[MatrixBlock, ...]]:
            key, triples = kv
            coords = np.array(triples, dtype=np.float64).reshape(-1, 3)
            rows = coords[:, 0].astype(np.int64)
            cols = coords[:, 1].astype(np.int64)
            values = coords[:, 2]
            blockRows = rows // blockSize
            blockCols = cols // blockSize
            blocks = []
            for bi, bj in sorted(set(zip(blockRows.tolist(), blockCols.tolist()))):
                mask = (blockRows == bi) & (blockCols == bj)
                shape = (blockHeight(bi, numRows, blockSize), blockHeight(bj, numCols, blockSize))
                data = scipy.sparse.coo_matrix(
                    (values[mask], (rows[mask] - bi * blockSize, cols[mask] - bj * blockSize)),
                    shape=shape,
                ).tocsr()
                # Duplicate coordinates are added up.
                data.sum_duplicates()
                blocks.append(MatrixBlock(bi, bj, data))
            return key, tuple(blocks)

        partitions = (
            entries.map(route)
            .groupByKey(numRowPartitions * numColPartitions, _GridPartitionFunc(numColPartitions))
            .map(buildBlocks, preservesPartitioning=True)
        )
        return BlockMatrix(
            partitions, numRows, numCols, blockSize, partitionHeightInBlocks, partitionWidthInBlocks
        )

    @staticmethod
    def fromLocalMatrix(
        engine: Engine,
        matrix: Union[np.ndarray, scipy.sparse.spmatrix],
        blockSize: int,
        partitionHeightInBlocks: int = 1,
        partitionWidthInBlocks: int = 1,
    ) -> "BlockMatrix":
        """
        Distributes a local matrix. A NumPy array gives dense blocks, a SciPy
        sparse matrix gives sparse blocks; all-zero blocks are dropped.
        """
        sparse = scipy.sparse.issparse(matrix)
        local = scipy.sparse.csr_matrix(matrix) if sparse else np.asarray(matrix, np.float64)
        if local.ndim != 2:
            raise ValueError("Expected a 2-dimensional matrix but got %d" % local.ndim)
        numRows, numCols = local.shape
        numRowPartitions = numBlocks(numBlocks(numRows, blockSize), partitionHeightInBlocks)
        numColPartitions = numBlocks(numBlocks(numCols, blockSize), partitionWidthInBlocks)

        grouped: Dict[Tuple[int, int], List[MatrixBlock]] = {}
        for bi in range(numBlocks(numRows, blockSize)):
            for bj in range(numBlocks(numCols, blockSize)):
                tile = local[
                    bi * blockSize : (bi + 1) * blockSize, bj * blockSize : (bj + 1) * blockSize
                ]
                nnz = tile.nnz if sparse else np.count_nonzero(tile)
                if nnz == 0:
                    continue
                key = (bi // partitionHeightInBlocks, bj // partitionWidthInBlocks)
                grouped.setdefault(key, []).append(MatrixBlock(bi, bj, tile.copy()))

        numPartitions = numRowPartitions * numColPartitions
        partitions = engine.parallelize(
            [(key, tuple(blocks)) for key, blocks in grouped.items()], numPartitions
        ).partitionBy(numPartitions, _GridPartitionFunc(numColPartitions))
        return BlockMatrix(
            partitions, numRows, numCols, blockSize, partitionHeightInBlocks, partitionWidthInBlocks
        )

    def blocks(self) -> PartitionedCollection:
        """Returns the stored blocks as a collection of :class:`MatrixBlock`."""
        return self._partitions.flatMap(lambda kv: kv[1])

    def toLocalMatrix(self) -> np.ndarray:
        """
        Collects the matrix to the driver as a dense ndarray.
        """
        result = np.zeros((self._numRows, self._numCols))
        blockSize = self._blockSize
        for block in self.blocks().collect():
            top, left = block.rowIndex * blockSize, block.colIndex * blockSize
            height, width = block.shape
            result[top : top + height, left : left + width] += block.toArray()
        return result

    def toCoordinates(self) -> PartitionedCollection:
        """
        Returns the stored non-zero entries as ``(row, col, value)`` triples.
        """
        blockSize = self._blockSize

        def explode(block: MatrixBlock) -> Iterable[Tuple[int, int, float]]:
            coo = scipy.sparse.coo_matrix(block.data)
            top, left = block.rowIndex * blockSize, block.colIndex * blockSize
            for r, c, v in zip(coo.row.tolist(), coo.col.tolist(), coo.data.tolist()):
                if v != 0.0:
                    yield top + r, left + c, v

        return self.blocks().flatMap(explode)

    def nnz(self) -> int:
        """Number of stored non-zero entries."""

        def seqOp(acc: int, kv: Tuple[Any, Tuple[MatrixBlock, ...]]) -> int:
            return acc + sum(block.nnz for block in kv[1])

        return self._partitions.treeAggregate(0, seqOp, lambda x, y: x + y)

    def transpose(self) -> "BlockMatrix":
        """
        Returns the transposed matrix; the super-partition geometry is
        transposed as well.
        """
        numColPartitions = self.numRowPartitions

        def flip(
            kv: Tuple[Tuple[int, int], Tuple[MatrixBlock, ...]]
        ) -> Tuple[Tuple[int, int], Tuple[MatrixBlock, ...]]:
            (pr, pc), blocks = kv
            return (pc, pr), tuple(block.transpose() for block in blocks)

        partitions = self._partitions.map(flip).partitionBy(
            self.numRowPartitions * self.numColPartitions, _GridPartitionFunc(numColPartitions)
        )
        return BlockMatrix(
            partitions,
            self._numCols,
            self._numRows,
            self._blockSize,
            self._partitionWidthInBlocks,
            self._partitionHeightInBlocks,
        )

    def multiply(self, other: SkinnyBlockMatrix) -> SkinnyBlockMatrix:
        """
        Returns ``self @ other``. ``other`` must have ``numCols`` rows and be
        partitioned like the super-partition columns of this matrix; the
        result is partitioned like the super-partition rows.

        >>> from sparkrsvd.collection import LocalEngine
        >>> engine = LocalEngine(2)
        >>> a = np.array([[1.0, 2.0, 0.0], [0.0, 0.0, 3.0]])
        >>> mat = BlockMatrix.fromLocalMatrix(engine, a, blockSize=2)
        >>> x = SkinnyBlockMatrix.fromLocalMatrix(engine, np.ones((3, 1)), 2)
        >>> mat.multiply(x).toLocalMatrix().ravel().tolist()
        [3.0, 3.0]
        """
        other.checkAligned(
            self._numCols, self._blockSize, self._partitionWidthInBlocks, "multiply"
        )
        return self._multiply(other, transpose=False)

    def transposeMultiply(self, other: SkinnyBlockMatrix) -> SkinnyBlockMatrix:
        """
        Returns ``self.T @ other``. ``other`` must have ``numRows`` rows and be
        partitioned like the super-partition rows of this matrix; the result
        is partitioned like the super-partition columns.
        """
        other.checkAligned(
            self._numRows, self._blockSize, self._partitionHeightInBlocks, "transposeMultiply"
        )
        return self._multiply(other, transpose=True)

    def _multiply(self, other: SkinnyBlockMatrix, transpose: bool) -> SkinnyBlockMatrix:
        blockSize = self._blockSize
        numCols = other.numCols
        numRowPartitions = self.numRowPartitions
        numColPartitions = self.numColPartitions
        if transpose:
            # Skinny blocks follow the rows of A, results follow its columns.
            inSpan, outSpan = self._partitionHeightInBlocks, self._partitionWidthInBlocks
            numOutPartitions, outSize = numColPartitions, self._numCols
        else:
            inSpan, outSpan = self._partitionWidthInBlocks, self._partitionHeightInBlocks
            numOutPartitions, outSize = numRowPartitions, self._numRows
        numOutBlocks = numBlocks(outSize, blockSize)

        def replicate(
            kv: Tuple[int, np.ndarray]
        ) -> Iterable[Tuple[Tuple[int, int], Tuple[int, np.ndarray]]]:
            i, block = kv
            if transpose:
                return [((i // inSpan, pc), kv) for pc in range(numColPartitions)]
            return [((pr, i // inSpan), kv) for pr in range(numRowPartitions)]

        def multiplyPartition(
            kv: Tuple[Tuple[int, int], Tuple[List[Tuple[MatrixBlock, ...]], List[Any]]]
        ) -> Iterable[Tuple[int, np.ndarray]]:
            (pr, pc), (blockGroups, skinnyBlocks) = kv
            vectors = dict(skinnyBlocks)
            outPartition, sharedIndex = (pc, pr) if transpose else (pr, pc)
            partial: Dict[int, np.ndarray] = {}
            if sharedIndex == 0:
                # Every output block gets at least one (zero) contribution.
                start = outPartition * outSpan
                for o in range(start, min(start + outSpan, numOutBlocks)):
                    partial[o] = np.zeros((blockHeight(o, outSize, blockSize), numCols))
            for blocks in blockGroups:
                for block in blocks:
                    if transpose:
                        o, product = block.colIndex, block.transposeDot(vectors[block.rowIndex])
                    else:
                        o, product = block.rowIndex, block.dot(vectors[block.colIndex])
                    if o in partial:
                        partial[o] += product
                    else:
                        partial[o] = product
            return partial.items()

        def add(x: np.ndarray, y: np.ndarray) -> np.ndarray:
            return x + y

        grid = _GridPartitionFunc(numColPartitions)
        products = (
            self._partitions.cogroup(
                other.blocks.flatMap(replicate), numRowPartitions * numColPartitions, grid
            )
            .flatMap(multiplyPartition)
            .reduceByKey(add, numOutPartitions, _BlockPartitionFunc(outSpan))
        )
        return SkinnyBlockMatrix(products, outSize, numCols, blockSize, outSpan)

    def persist(self) -> "BlockMatrix":
        self._partitions.persist()
        return self

    def unpersist(self) -> "BlockMatrix":
        self._partitions.unpersist()
        return self

    def __repr__(self) -> str:
        return "BlockMatrix(%d x %d, blockSize=%d, partition=%dx%d blocks)" % (
            self._numRows,
            self._numCols,
            self._blockSize,
            self._partitionHeightInBlocks,
            self._partitionWidthInBlocks,
        )


def _test() -> None:
    import doctest
    import sys
    import sparkrsvd.linalg.distributed

    globs = sparkrsvd.linalg.distributed.__dict__.copy()
    (failure_count, test_count) = doctest.testmod(
        sparkrsvd.linalg.distributed, globs=globs, optionflags=doctest.ELLIPSIS
    )
    if failure_count:
        sys.exit(-1)


if __name__ == "__main__":
    _test()
