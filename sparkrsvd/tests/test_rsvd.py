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

import unittest

import numpy as np
import scipy.sparse
from scipy.sparse.linalg import svds

from sparkrsvd.conf import RsvdConfig
from sparkrsvd.errors import IllegalArgumentException, NumericalFailureException
from sparkrsvd.linalg.distributed import BlockMatrix
from sparkrsvd.rsvd import RSVD
from sparkrsvd.tests.utils import (
    RsvdTestCase,
    large_tests_message,
    low_rank,
    random_sparse,
    run_large_tests,
)


def scattered_diagonal(num_rows, num_cols, decay, seed=0):
    """
    A sparse matrix whose singular values are ``decay ** i``: a diagonal
    matrix with randomly permuted rows and columns.
    """
    rng = np.random.default_rng(seed)
    rank = min(num_rows, num_cols)
    rows = rng.permutation(num_rows)[:rank]
    cols = rng.permutation(num_cols)
    values = decay ** np.arange(rank) * rng.choice([-1.0, 1.0], rank)
    triples = list(zip(rows.tolist(), cols.tolist(), values.tolist()))
    csr = scipy.sparse.coo_matrix((values, (rows, cols)), shape=(num_rows, num_cols)).tocsr()
    return triples, csr


class RSVDTests(RsvdTestCase):
    def conf(self, **kwargs):
        return RsvdConfig(**dict(dict(seed=7, blockSize=8), **kwargs))

    def test_exact_low_rank(self):
        a = low_rank(60, 40, [10.0, 7.0, 5.0, 3.0, 1.0], seed=1)
        mat = BlockMatrix.fromLocalMatrix(self.engine, a, 8, 2, 1)
        conf = self.conf(embeddingDim=3, oversample=4, partitionHeightInBlocks=2)
        result = RSVD.run(mat, conf)
        self.assertArrayAlmostEqual(result.singularValues, [10.0, 7.0, 5.0])

        left = result.leftSingularVectors.toLocalMatrix()
        right = result.rightSingularVectors.toLocalMatrix()
        self.assertEqual(left.shape, (60, 3))
        self.assertEqual(right.shape, (40, 3))
        self.assertEqual(result.leftSingularVectors.partitionSizeInBlocks, 2)
        self.assertEqual(result.rightSingularVectors.partitionSizeInBlocks, 1)
        self.assertArrayAlmostEqual(left.T @ left, np.eye(3), atol=1e-9)
        self.assertArrayAlmostEqual(right.T @ right, np.eye(3), atol=1e-9)

        u, s, vt = np.linalg.svd(a)
        expected = (u[:, :3] * s[:3]) @ vt[:3]
        self.assertArrayAlmostEqual((left * result.singularValues) @ right.T, expected, atol=1e-9)
        # Vectors are unique up to sign.
        self.assertArrayAlmostEqual(np.abs(np.sum(left * u[:, :3], axis=0)), np.ones(3))

    def test_matches_svds(self):
        triples, csr = scattered_diagonal(400, 300, 0.7, seed=2)
        mat = BlockMatrix.fromCoordinates(self.engine.parallelize(triples, 6), 400, 300, 50, 2, 3)
        conf = RsvdConfig(
            embeddingDim=10,
            oversample=10,
            powerIter=1,
            seed=3,
            blockSize=50,
            partitionHeightInBlocks=2,
            partitionWidthInBlocks=3,
        )
        result = RSVD.run(mat, conf)
        expected = np.sort(svds(csr, k=10, return_singular_vectors=False))[::-1]
        self.assertArrayAlmostEqual(result.singularValues, expected, rtol=1e-6)
        self.assertArrayAlmostEqual(result.singularValues, 0.7 ** np.arange(10), rtol=1e-6)

    def test_values_descending(self):
        triples, _ = random_sparse(120, 90, 600, seed=4)
        mat = BlockMatrix.fromCoordinates(self.engine.parallelize(triples), 120, 90, 16, 2, 2)
        conf = self.conf(
            embeddingDim=8,
            oversample=5,
            blockSize=16,
            partitionHeightInBlocks=2,
            partitionWidthInBlocks=2,
            computeLeftSingularVectors=False,
            computeRightSingularVectors=False,
        )
        values = RSVD.run(mat, conf).singularValues
        self.assertEqual(values.shape, (8,))
        self.assertTrue(np.all(values >= 0))
        self.assertTrue(np.all(np.diff(values) <= 0))

    def test_values_bounded_by_exact(self):
        triples, csr = random_sparse(80, 70, 400, seed=5)
        mat = BlockMatrix.fromCoordinates(self.engine.parallelize(triples), 80, 70, 8)
        conf = self.conf(embeddingDim=5, oversample=5, powerIter=3)
        values = RSVD.run(mat, conf).singularValues
        exact = np.linalg.svd(csr.toarray(), compute_uv=False)[:5]
        self.assertTrue(np.all(values <= exact * (1 + 1e-9)))
        self.assertLess(abs(values[0] - exact[0]) / exact[0], 0.1)

    def test_deterministic(self):
        triples, _ = random_sparse(50, 50, 300, seed=6)
        mat = BlockMatrix.fromCoordinates(self.engine.parallelize(triples), 50, 50, 8)
        conf = self.conf(embeddingDim=4, oversample=4)
        first = RSVD.run(mat, conf)
        second = RSVD.run(mat, conf)
        self.assertArrayAlmostEqual(first.singularValues, second.singularValues, rtol=1e-10)
        self.assertArrayAlmostEqual(
            first.rightSingularVectors.toLocalMatrix(),
            second.rightSingularVectors.toLocalMatrix(),
            rtol=1e-8,
            atol=1e-10,
        )

    def test_no_power_iteration(self):
        a = low_rank(30, 30, [4.0, 2.0], seed=7)
        mat = BlockMatrix.fromLocalMatrix(self.engine, a, 8)
        result = RSVD.run(mat, self.conf(embeddingDim=2, oversample=2, powerIter=0))
        self.assertArrayAlmostEqual(result.singularValues, [4.0, 2.0])

    def test_zero_matrix(self):
        mat = BlockMatrix.fromCoordinates(self.engine.parallelize([]), 20, 15, 8)
        result = RSVD.run(mat, self.conf(embeddingDim=2, oversample=2))
        self.assertArrayAlmostEqual(result.singularValues, [0.0, 0.0], atol=0)
        self.assertTrue(result.leftSingularVectors.isFinite())
        self.assertTrue(result.rightSingularVectors.isFinite())

    def test_flags_omit_vectors(self):
        mat = BlockMatrix.fromLocalMatrix(self.engine, np.eye(16), 8)
        conf = self.conf(embeddingDim=2, oversample=1, computeLeftSingularVectors=False)
        result = RSVD.run(mat, conf)
        self.assertIsNone(result.leftSingularVectors)
        self.assertEqual(result.rightSingularVectors.shape, (16, 2))

        result = RSVD.run(mat, conf.copy(computeRightSingularVectors=False))
        self.assertIsNone(result.leftSingularVectors)
        self.assertIsNone(result.rightSingularVectors)

    def test_invalid_config(self):
        mat = BlockMatrix.fromLocalMatrix(self.engine, np.eye(10), 8)
        bad = [
            self.conf(embeddingDim=8, oversample=3),
            self.conf(embeddingDim=2, oversample=2, blockSize=4),
            self.conf(embeddingDim=2, oversample=2, partitionWidthInBlocks=2),
        ]
        for conf in bad:
            with self.assertRaises(IllegalArgumentException) as ctx:
                RSVD.run(mat, conf)
            self.assertEqual(ctx.exception.getErrorClass(), "INVALID_CONFIG")

    def test_non_finite_input(self):
        entries = self.engine.parallelize([(0, 0, 1.0), (3, 2, float("nan")), (5, 5, 2.0)])
        mat = BlockMatrix.fromCoordinates(entries, 10, 10, 4)
        conf = self.conf(embeddingDim=2, oversample=1, blockSize=4)
        with self.assertRaises(NumericalFailureException) as ctx:
            RSVD.run(mat, conf)
        self.assertEqual(ctx.exception.getErrorClass(), "NON_FINITE_VALUES")
        self.assertEqual(ctx.exception.getMessageParameters(), {"stage": "multiply"})


@unittest.skipIf(not run_large_tests, large_tests_message)
class LargeRSVDTests(RsvdTestCase):
    def test_huge_sparse(self):
        n = 200000
        rng = np.random.default_rng(0)
        rows = rng.integers(0, n, 400000).tolist()
        cols = rng.integers(0, n, 400000).tolist()
        values = rng.standard_normal(400000).tolist()
        entries = self.engine.parallelize(list(zip(rows, cols, values)), 16)
        mat = BlockMatrix.fromCoordinates(entries, n, n, 50000)
        conf = RsvdConfig(embeddingDim=100, oversample=30, powerIter=1, seed=0, blockSize=50000)
        result = RSVD.run(mat, conf)
        values = result.singularValues
        self.assertEqual(values.shape, (100,))
        self.assertTrue(np.all(np.diff(values) <= 0))
        self.assertTrue(np.all(values >= 0))
        self.assertEqual(result.leftSingularVectors.shape, (n, 100))
        self.assertEqual(result.rightSingularVectors.shape, (n, 100))

    def test_compare_with_svds(self):
        triples, csr = random_sparse(10000, 10000, 20000, seed=1)
        mat = BlockMatrix.fromCoordinates(self.engine.parallelize(triples, 8), 10000, 10000, 1000)
        conf = RsvdConfig(
            embeddingDim=100,
            oversample=30,
            powerIter=2,
            seed=0,
            blockSize=1000,
            computeLeftSingularVectors=False,
            computeRightSingularVectors=False,
        )
        values = RSVD.run(mat, conf).singularValues
        expected = np.sort(svds(csr, k=100, return_singular_vectors=False))[::-1]
        self.assertTrue(np.all(values <= expected * (1 + 1e-8)))
        self.assertLess(abs(values[0] - expected[0]) / expected[0], 1e-2)
        self.assertLess(np.max(np.abs(values - expected) / expected), 0.25)


if __name__ == "__main__":
    unittest.main(verbosity=2)
