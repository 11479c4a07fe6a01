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

import os
import shutil
import unittest

import numpy as np
import scipy.sparse

from sparkrsvd.collection import LocalEngine


have_java = shutil.which("java") is not None or "JAVA_HOME" in os.environ
java_requirement_message = None if have_java else "A Java runtime is required to start Spark"

run_large_tests = os.environ.get("SPARKRSVD_LARGE_TESTS", "false").lower() == "true"
large_tests_message = "Set SPARKRSVD_LARGE_TESTS=true to run the large end-to-end tests"


class RsvdTestCase(unittest.TestCase):
    """
    Runs every test on a fresh :class:`LocalEngine` with four threads.
    """

    def setUp(self):
        self.engine = LocalEngine(4)

    def tearDown(self):
        self.engine.stop()

    def assertArrayAlmostEqual(self, actual, expected, rtol=1e-7, atol=1e-9):
        np.testing.assert_allclose(actual, expected, rtol=rtol, atol=atol)


def random_sparse(num_rows, num_cols, nnz, seed=0):
    """
    A sparse matrix with ``nnz`` entries at uniformly drawn positions, as a
    list of ``(row, col, value)`` triples and as a SciPy CSR matrix.
    """
    rng = np.random.default_rng(seed)
    rows = rng.integers(0, num_rows, nnz)
    cols = rng.integers(0, num_cols, nnz)
    values = rng.standard_normal(nnz)
    triples = list(zip(rows.tolist(), cols.tolist(), values.tolist()))
    csr = scipy.sparse.coo_matrix((values, (rows, cols)), shape=(num_rows, num_cols)).tocsr()
    return triples, csr


def low_rank(num_rows, num_cols, singular_values, seed=0):
    """
    A dense matrix with the given singular values.
    """
    rng = np.random.default_rng(seed)
    rank = len(singular_values)
    u, _ = np.linalg.qr(rng.standard_normal((num_rows, rank)))
    v, _ = np.linalg.qr(rng.standard_normal((num_cols, rank)))
    return (u * np.asarray(singular_values)) @ v.T
