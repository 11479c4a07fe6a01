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

__all__ = ["RsvdConfig"]

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, TYPE_CHECKING

from sparkrsvd.errors import IllegalArgumentException

if TYPE_CHECKING:
    from pyspark import SparkConf


_CONF_PREFIX = "spark.rsvd."


@dataclass(frozen=True)
class RsvdConfig:
    """
    Configuration of a randomized SVD run. Instances are immutable; use
    :meth:`copy` to derive a modified configuration.

    :param embeddingDim: number of singular values/vectors to return.
    :param oversample: extra random basis columns carried during the
        computation and dropped before the output.
    :param powerIter: number of power iterations, each one performs one
        multiplication by A and one by A transposed.
    :param seed: seed of the random Gaussian basis.
    :param blockSize: height and width of a block of the matrix.
    :param partitionWidthInBlocks: width of a super-partition, in blocks.
    :param partitionHeightInBlocks: height of a super-partition, in blocks.
    :param computeLeftSingularVectors: whether to return the left singular
        vectors.
    :param computeRightSingularVectors: whether to return the right singular
        vectors.
    :param tsqrFanIn: number of R factors combined by one node of the TSQR
        reduction tree.

    Peak memory of one task is roughly
    ``partitionWidthInBlocks * partitionHeightInBlocks * blockSize**2 * density * 8``
    bytes for the sparse blocks plus
    ``partitionWidthInBlocks * blockSize * (embeddingDim + oversample) * 8``
    bytes for the dense ones, see :meth:`estimatedTaskMemoryBytes`.

    >>> conf = RsvdConfig(embeddingDim=10, oversample=5, blockSize=100)
    >>> conf.numColumns
    15
    >>> conf.copy(powerIter=2).powerIter
    2
    >>> RsvdConfig(embeddingDim=0)
    Traceback (most recent call last):
        ...
    sparkrsvd.errors.exceptions.IllegalArgumentException: [INVALID_CONFIG] ...
    """

    embeddingDim: int = 100
    oversample: int = 30
    powerIter: int = 1
    seed: int = 0
    blockSize: int = 50000
    partitionWidthInBlocks: int = 1
    partitionHeightInBlocks: int = 1
    computeLeftSingularVectors: bool = True
    computeRightSingularVectors: bool = True
    tsqrFanIn: int = 4

    def __post_init__(self) -> None:
        minimums = {
            "embeddingDim": 1,
            "oversample": 0,
            "powerIter": 0,
            "blockSize": 1,
            "partitionWidthInBlocks": 1,
            "partitionHeightInBlocks": 1,
            "tsqrFanIn": 2,
        }
        for name, minimum in minimums.items():
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < minimum:
                raise IllegalArgumentException(
                    error_class="INVALID_CONFIG",
                    message_parameters={
                        "reason": f"{name} must be an integer >= {minimum} but got {value!r}."
                    },
                )

    @property
    def numColumns(self) -> int:
        """Width of the random basis, ``embeddingDim + oversample``."""
        return self.embeddingDim + self.oversample

    def estimatedTaskMemoryBytes(self, density: float = 1.0) -> float:
        """
        Rough peak memory of one multiplication task, in bytes, for a matrix
        with the given fraction of non-zero entries.
        """
        sparse = (
            self.partitionWidthInBlocks * self.partitionHeightInBlocks * self.blockSize**2
        ) * density * 8
        dense = self.partitionWidthInBlocks * self.blockSize * self.numColumns * 8
        return sparse + dense

    def copy(self, **changes: Any) -> "RsvdConfig":
        return dataclasses.replace(self, **changes)

    def toDict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def fromSparkConf(cls, conf: "SparkConf") -> "RsvdConfig":
        """
        Read the configuration from ``spark.rsvd.*`` keys of a SparkConf,
        e.g. ``spark.rsvd.embeddingDim``. Missing keys keep their defaults.

        >>> from pyspark import SparkConf
        >>> conf = SparkConf(loadDefaults=False).set("spark.rsvd.embeddingDim", "20")
        >>> conf = conf.set("spark.rsvd.computeLeftSingularVectors", "false")
        >>> rsvdConf = RsvdConfig.fromSparkConf(conf)
        >>> rsvdConf.embeddingDim, rsvdConf.computeLeftSingularVectors
        (20, False)
        """
        values: Dict[str, Any] = {}
        for field in dataclasses.fields(cls):
            raw = conf.get(_CONF_PREFIX + field.name)
            if raw is None:
                continue
            values[field.name] = _parse(field.name, raw, field.type)
        return cls(**values)


def _parse(name: str, raw: str, tpe: Any) -> Any:
    if tpe in (bool, "bool"):
        lowered = raw.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
    else:
        try:
            return int(raw)
        except ValueError:
            pass
    raise IllegalArgumentException(
        error_class="INVALID_CONFIG",
        message_parameters={"reason": f"cannot parse {_CONF_PREFIX}{name}={raw!r}."},
    )


def _test() -> None:
    import doctest
    import sys
    import sparkrsvd.conf

    globs = sparkrsvd.conf.__dict__.copy()
    (failure_count, test_count) = doctest.testmod(
        sparkrsvd.conf, globs=globs, optionflags=doctest.ELLIPSIS
    )
    if failure_count:
        sys.exit(-1)


if __name__ == "__main__":
    _test()
