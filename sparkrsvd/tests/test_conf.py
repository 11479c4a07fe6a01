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

import dataclasses
import pickle
import unittest

from pyspark import SparkConf

from sparkrsvd.conf import RsvdConfig
from sparkrsvd.errors import (
    DimensionMismatchException,
    IllegalArgumentException,
    IndexOutOfBoundsException,
    NumericalFailureException,
    RsvdException,
)
from sparkrsvd.errors.utils import ErrorClassesReader


class RsvdConfigTests(unittest.TestCase):
    def test_defaults(self):
        conf = RsvdConfig()
        self.assertEqual(conf.embeddingDim, 100)
        self.assertEqual(conf.oversample, 30)
        self.assertEqual(conf.powerIter, 1)
        self.assertEqual(conf.seed, 0)
        self.assertEqual(conf.blockSize, 50000)
        self.assertEqual(conf.partitionWidthInBlocks, 1)
        self.assertEqual(conf.partitionHeightInBlocks, 1)
        self.assertTrue(conf.computeLeftSingularVectors)
        self.assertTrue(conf.computeRightSingularVectors)
        self.assertEqual(conf.tsqrFanIn, 4)
        self.assertEqual(conf.numColumns, 130)

    def test_immutable(self):
        conf = RsvdConfig(embeddingDim=5)
        with self.assertRaises(dataclasses.FrozenInstanceError):
            conf.embeddingDim = 6
        changed = conf.copy(seed=11)
        self.assertEqual((conf.seed, changed.seed), (0, 11))
        self.assertEqual(changed.embeddingDim, 5)
        self.assertEqual(conf.toDict()["embeddingDim"], 5)

    def test_validation(self):
        invalid = [
            dict(embeddingDim=0),
            dict(oversample=-1),
            dict(powerIter=-1),
            dict(blockSize=0),
            dict(partitionWidthInBlocks=0),
            dict(partitionHeightInBlocks=0),
            dict(tsqrFanIn=1),
            dict(embeddingDim=2.5),
            dict(blockSize=True),
        ]
        for kwargs in invalid:
            with self.assertRaises(IllegalArgumentException) as ctx:
                RsvdConfig(**kwargs)
            self.assertEqual(ctx.exception.getErrorClass(), "INVALID_CONFIG")
        RsvdConfig(oversample=0, powerIter=0)

    def test_estimated_task_memory(self):
        conf = RsvdConfig(
            embeddingDim=10, oversample=0, blockSize=100, partitionWidthInBlocks=2,
            partitionHeightInBlocks=3,
        )
        sparse = 2 * 3 * 100**2 * 0.5 * 8
        dense = 2 * 100 * 10 * 8
        self.assertEqual(conf.estimatedTaskMemoryBytes(0.5), sparse + dense)
        self.assertGreater(conf.estimatedTaskMemoryBytes(), conf.estimatedTaskMemoryBytes(0.1))

    def test_from_spark_conf(self):
        sparkConf = SparkConf(loadDefaults=False)
        sparkConf.set("spark.rsvd.embeddingDim", "12")
        sparkConf.set("spark.rsvd.oversample", "3")
        sparkConf.set("spark.rsvd.blockSize", "1000")
        sparkConf.set("spark.rsvd.computeRightSingularVectors", "False")
        sparkConf.set("spark.rsvd.unknownKey", "1")
        conf = RsvdConfig.fromSparkConf(sparkConf)
        self.assertEqual(conf.embeddingDim, 12)
        self.assertEqual(conf.oversample, 3)
        self.assertEqual(conf.blockSize, 1000)
        self.assertFalse(conf.computeRightSingularVectors)
        self.assertTrue(conf.computeLeftSingularVectors)
        self.assertEqual(conf.powerIter, 1)

    def test_from_spark_conf_invalid(self):
        for key, value in [("embeddingDim", "ten"), ("computeLeftSingularVectors", "maybe"),
                           ("tsqrFanIn", "1")]:
            sparkConf = SparkConf(loadDefaults=False).set("spark.rsvd." + key, value)
            with self.assertRaises(IllegalArgumentException):
                RsvdConfig.fromSparkConf(sparkConf)


class ErrorsTests(unittest.TestCase):
    def test_error_message(self):
        e = IndexOutOfBoundsException(
            error_class="INDEX_OUT_OF_BOUNDS",
            message_parameters={"row": "7", "col": "1", "numRows": "5", "numCols": "3"},
        )
        self.assertEqual(
            str(e), "[INDEX_OUT_OF_BOUNDS] Entry (7, 1) is outside of a 5 x 3 matrix."
        )
        self.assertIsInstance(e, IndexError)
        self.assertIsInstance(e, RsvdException)

    def test_sub_class_message(self):
        e = DimensionMismatchException(
            error_class="DIMENSION_MISMATCH.NUM_ROWS",
            message_parameters={"operation": "multiply", "expected": "4", "actual": "5"},
        )
        self.assertEqual(
            str(e),
            "[DIMENSION_MISMATCH.NUM_ROWS] Cannot multiply: operands are not aligned. "
            "Expected 4 rows but got 5.",
        )
        self.assertIsInstance(e, ValueError)

    def test_plain_message(self):
        e = NumericalFailureException("overflow")
        self.assertIsNone(e.getErrorClass())
        self.assertIsNone(e.getMessageParameters())
        self.assertEqual(str(e), "overflow")
        self.assertIsInstance(e, ArithmeticError)

    def test_pickle(self):
        e = IllegalArgumentException(
            error_class="INVALID_CONFIG", message_parameters={"reason": "bad"}
        )
        restored = pickle.loads(pickle.dumps(e))
        self.assertIsInstance(restored, IllegalArgumentException)
        self.assertEqual(restored.getErrorClass(), "INVALID_CONFIG")
        self.assertEqual(restored.getMessageParameters(), {"reason": "bad"})
        self.assertEqual(str(restored), str(e))
        plain = pickle.loads(pickle.dumps(NumericalFailureException("nan")))
        self.assertEqual(str(plain), "nan")

    def test_error_classes_reader(self):
        reader = ErrorClassesReader()
        self.assertEqual(
            reader.get_message_template("DIMENSION_MISMATCH.BLOCK_SIZE"),
            "Cannot <operation>: operands are not aligned. "
            "Block size <left> does not match block size <right>.",
        )
        self.assertRaises(ValueError, lambda: reader.get_message_template("UNKNOWN"))
        self.assertRaises(
            ValueError, lambda: reader.get_message_template("DIMENSION_MISMATCH.UNKNOWN")
        )
        with self.assertRaises(AssertionError):
            reader.get_error_message("INVALID_CONFIG", {"cause": "x"})

    def test_error_classes_are_sorted(self):
        from sparkrsvd.errors.error_classes import ERROR_CLASSES_MAP

        self.assertEqual(list(ERROR_CLASSES_MAP), sorted(ERROR_CLASSES_MAP))
        for info in ERROR_CLASSES_MAP.values():
            self.assertIn("message", info)
            subClasses = info.get("sub_class", {})
            self.assertEqual(list(subClasses), sorted(subClasses))


if __name__ == "__main__":
    unittest.main(verbosity=2)
