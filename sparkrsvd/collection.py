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
Partitioned collections the RSVD engine runs on.

The matrices only rely on the small set of operations declared by
:class:`PartitionedCollection`. :class:`RDDCollection` delegates them to a
PySpark RDD, :class:`LocalCollection` runs them on a thread pool of the
current process.
"""

import copy
from concurrent.futures import ThreadPoolExecutor
from itertools import chain
from math import ceil
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Hashable,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

from pyspark import RDD, SparkContext, StorageLevel

__all__ = [
    "PartitionedCollection",
    "RDDCollection",
    "LocalCollection",
    "Engine",
    "SparkEngine",
    "LocalEngine",
    "toCollection",
]

T = TypeVar("T")
U = TypeVar("U")
K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class Engine:
    """
    Creates partitioned collections from local data.
    """

    @property
    def defaultParallelism(self) -> int:
        raise NotImplementedError

    def parallelize(
        self, data: Iterable[T], numSlices: Optional[int] = None
    ) -> "PartitionedCollection[T]":
        raise NotImplementedError


class PartitionedCollection(Generic[T]):
    """
    An immutable collection split into partitions. Every transformation
    returns a new collection. Keyed operations work on collections of
    ``(key, value)`` pairs and accept a ``partitionFunc`` mapping a key to an
    integer; the key lands on partition ``partitionFunc(key) % numPartitions``.
    """

    engine: Engine

    def getNumPartitions(self) -> int:
        raise NotImplementedError

    def mapPartitions(
        self, f: Callable[[Iterable[T]], Iterable[U]], preservesPartitioning: bool = False
    ) -> "PartitionedCollection[U]":
        raise NotImplementedError

    def map(
        self, f: Callable[[T], U], preservesPartitioning: bool = False
    ) -> "PartitionedCollection[U]":
        def func(iterator: Iterable[T]) -> Iterable[U]:
            return map(f, iterator)

        return self.mapPartitions(func, preservesPartitioning)

    def flatMap(
        self, f: Callable[[T], Iterable[U]], preservesPartitioning: bool = False
    ) -> "PartitionedCollection[U]":
        def func(iterator: Iterable[T]) -> Iterable[U]:
            return chain.from_iterable(map(f, iterator))

        return self.mapPartitions(func, preservesPartitioning)

    def mapValues(self, f: Callable[[V], U]) -> "PartitionedCollection[Tuple[K, U]]":
        def func(kv: Tuple[K, V]) -> Tuple[K, U]:
            return kv[0], f(kv[1])

        return self.map(func, preservesPartitioning=True)  # type: ignore[arg-type]

    def filter(self, f: Callable[[T], bool]) -> "PartitionedCollection[T]":
        def func(iterator: Iterable[T]) -> Iterable[T]:
            return (x for x in iterator if f(x))

        return self.mapPartitions(func, preservesPartitioning=True)

    def partitionBy(
        self, numPartitions: int, partitionFunc: Optional[Callable[[K], int]] = None
    ) -> "PartitionedCollection[Tuple[K, V]]":
        raise NotImplementedError

    def reduceByKey(
        self,
        func: Callable[[V, V], V],
        numPartitions: Optional[int] = None,
        partitionFunc: Optional[Callable[[K], int]] = None,
    ) -> "PartitionedCollection[Tuple[K, V]]":
        raise NotImplementedError

    def groupByKey(
        self,
        numPartitions: Optional[int] = None,
        partitionFunc: Optional[Callable[[K], int]] = None,
    ) -> "PartitionedCollection[Tuple[K, List[V]]]":
        raise NotImplementedError

    def cogroup(
        self,
        other: "PartitionedCollection[Tuple[K, U]]",
        numPartitions: Optional[int] = None,
        partitionFunc: Optional[Callable[[K], int]] = None,
    ) -> "PartitionedCollection[Tuple[K, Tuple[List[V], List[U]]]]":
        """
        For each key present in either collection, return the list of values
        of this collection and the list of values of ``other`` for that key.
        """

        def tagLeft(kv: Tuple[K, V]) -> Tuple[K, Tuple[int, Any]]:
            return kv[0], (0, kv[1])

        def tagRight(kv: Tuple[K, U]) -> Tuple[K, Tuple[int, Any]]:
            return kv[0], (1, kv[1])

        def dispatch(seq: Iterable[Tuple[int, Any]]) -> Tuple[List[V], List[U]]:
            vbuf: List[V] = []
            wbuf: List[U] = []
            for n, v in seq:
                if n == 0:
                    vbuf.append(v)
                else:
                    wbuf.append(v)
            return vbuf, wbuf

        tagged = self.map(tagLeft, True).union(other.map(tagRight, True))  # type: ignore
        return tagged.groupByKey(numPartitions, partitionFunc).mapValues(dispatch)

    def union(self, other: "PartitionedCollection[U]") -> "PartitionedCollection[Union[T, U]]":
        raise NotImplementedError

    def treeAggregate(
        self,
        zeroValue: U,
        seqOp: Callable[[U, T], U],
        combOp: Callable[[U, U], U],
        depth: int = 2,
    ) -> U:
        raise NotImplementedError

    def treeReduce(self, f: Callable[[T, T], T], depth: int = 2) -> T:
        """
        Reduces the elements of this collection in a multi-level tree pattern.
        The collection must not be empty.
        """
        zeroValue: Any = None, True

        def op(x: Tuple[T, bool], y: Tuple[T, bool]) -> Tuple[T, bool]:
            if x[1]:
                return y
            elif y[1]:
                return x
            else:
                return f(x[0], y[0]), False

        def wrap(x: T) -> Tuple[T, bool]:
            return x, False

        reduced = self.map(wrap).treeAggregate(zeroValue, op, op, depth)
        if reduced[1]:
            raise ValueError("Cannot reduce empty collection.")
        return reduced[0]

    def collect(self) -> List[T]:
        raise NotImplementedError

    def collectAsMap(self) -> Dict[K, V]:
        return dict(self.collect())  # type: ignore[arg-type]

    def take(self, num: int) -> List[T]:
        raise NotImplementedError

    def count(self) -> int:
        def countPartition(iterator: Iterable[T]) -> Iterable[int]:
            yield sum(1 for _ in iterator)

        return sum(self.mapPartitions(countPartition).collect())

    def persist(self) -> "PartitionedCollection[T]":
        return self

    def unpersist(self) -> "PartitionedCollection[T]":
        return self


class RDDCollection(PartitionedCollection[T]):
    """
    A :class:`PartitionedCollection` backed by a PySpark RDD.
    """

    def __init__(self, rdd: RDD, engine: Optional["SparkEngine"] = None):
        self.rdd = rdd
        self.engine = engine if engine is not None else SparkEngine(rdd.context)

    def _wrap(self, rdd: RDD) -> "RDDCollection":
        return RDDCollection(rdd, self.engine)

    def getNumPartitions(self) -> int:
        return self.rdd.getNumPartitions()

    def mapPartitions(
        self, f: Callable[[Iterable[T]], Iterable[U]], preservesPartitioning: bool = False
    ) -> "RDDCollection[U]":
        return self._wrap(self.rdd.mapPartitions(f, preservesPartitioning))

    def map(self, f: Callable[[T], U], preservesPartitioning: bool = False) -> "RDDCollection[U]":
        return self._wrap(self.rdd.map(f, preservesPartitioning))

    def flatMap(
        self, f: Callable[[T], Iterable[U]], preservesPartitioning: bool = False
    ) -> "RDDCollection[U]":
        return self._wrap(self.rdd.flatMap(f, preservesPartitioning))

    def mapValues(self, f: Callable[[V], U]) -> "RDDCollection[Tuple[K, U]]":
        return self._wrap(self.rdd.mapValues(f))

    def filter(self, f: Callable[[T], bool]) -> "RDDCollection[T]":
        return self._wrap(self.rdd.filter(f))

    def partitionBy(
        self, numPartitions: int, partitionFunc: Optional[Callable[[K], int]] = None
    ) -> "RDDCollection[Tuple[K, V]]":
        if partitionFunc is None:
            return self._wrap(self.rdd.partitionBy(numPartitions))
        return self._wrap(self.rdd.partitionBy(numPartitions, partitionFunc))

    def reduceByKey(
        self,
        func: Callable[[V, V], V],
        numPartitions: Optional[int] = None,
        partitionFunc: Optional[Callable[[K], int]] = None,
    ) -> "RDDCollection[Tuple[K, V]]":
        if partitionFunc is None:
            return self._wrap(self.rdd.reduceByKey(func, numPartitions))
        return self._wrap(self.rdd.reduceByKey(func, numPartitions, partitionFunc))

    def groupByKey(
        self,
        numPartitions: Optional[int] = None,
        partitionFunc: Optional[Callable[[K], int]] = None,
    ) -> "RDDCollection[Tuple[K, List[V]]]":
        if partitionFunc is None:
            grouped = self.rdd.groupByKey(numPartitions)
        else:
            grouped = self.rdd.groupByKey(numPartitions, partitionFunc)
        return self._wrap(grouped.mapValues(list))

    def union(self, other: PartitionedCollection[U]) -> "RDDCollection[Union[T, U]]":
        if not isinstance(other, RDDCollection):
            raise TypeError("Cannot union an RDD with %s" % type(other).__name__)
        return self._wrap(self.rdd.union(other.rdd))

    def treeAggregate(
        self,
        zeroValue: U,
        seqOp: Callable[[U, T], U],
        combOp: Callable[[U, U], U],
        depth: int = 2,
    ) -> U:
        return self.rdd.treeAggregate(zeroValue, seqOp, combOp, depth)

    def collect(self) -> List[T]:
        return self.rdd.collect()

    def take(self, num: int) -> List[T]:
        return self.rdd.take(num)

    def count(self) -> int:
        return self.rdd.count()

    def persist(self) -> "RDDCollection[T]":
        self.rdd.persist(StorageLevel.MEMORY_AND_DISK)
        return self

    def unpersist(self) -> "RDDCollection[T]":
        self.rdd.unpersist()
        return self


class SparkEngine(Engine):
    """
    Creates :class:`RDDCollection` instances through a SparkContext.
    """

    def __init__(self, sc: SparkContext):
        self.sc = sc

    @property
    def defaultParallelism(self) -> int:
        return self.sc.defaultParallelism

    def parallelize(self, data: Iterable[T], numSlices: Optional[int] = None) -> RDDCollection[T]:
        return RDDCollection(self.sc.parallelize(data, numSlices), self)


class LocalCollection(PartitionedCollection[T]):
    """
    A :class:`PartitionedCollection` held in the memory of the current
    process. Transformations are evaluated eagerly, one task per partition on
    the thread pool of the :class:`LocalEngine`.

    Examples
    --------
    >>> from operator import add
    >>> engine = LocalEngine(2)
    >>> pairs = engine.parallelize([(1, 2.0), (2, 1.0), (1, 3.0)], 2)
    >>> sorted(pairs.reduceByKey(add).collect())
    [(1, 5.0), (2, 1.0)]
    >>> engine.parallelize(range(10), 3).treeAggregate(0, add, add)
    45
    """

    def __init__(self, partitions: Sequence[Sequence[T]], engine: "LocalEngine"):
        self._partitions: Tuple[Tuple[T, ...], ...] = tuple(tuple(p) for p in partitions)
        self.engine = engine

    def getNumPartitions(self) -> int:
        return len(self._partitions)

    def mapPartitions(
        self, f: Callable[[Iterable[T]], Iterable[U]], preservesPartitioning: bool = False
    ) -> "LocalCollection[U]":
        def task(partition: Tuple[T, ...]) -> List[U]:
            return list(f(iter(partition)))

        return LocalCollection(self.engine._run(task, self._partitions), self.engine)

    def _shuffle(
        self,
        combine: Callable[[Iterable[Tuple[K, V]]], Iterable[Tuple[K, Any]]],
        numPartitions: Optional[int],
        partitionFunc: Optional[Callable[[K], int]],
    ) -> List[List[Tuple[K, Any]]]:
        if numPartitions is None:
            numPartitions = self.getNumPartitions()
        numPartitions = max(numPartitions, 1)
        partitionFunc = partitionFunc or hash

        def mapSide(partition: Tuple[Tuple[K, V], ...]) -> List[Tuple[K, Any]]:
            return list(combine(partition))

        buckets: List[List[Tuple[K, Any]]] = [[] for _ in range(numPartitions)]
        for combined in self.engine._run(mapSide, self._partitions):  # type: ignore[arg-type]
            for k, v in combined:
                buckets[partitionFunc(k) % numPartitions].append((k, v))
        return buckets

    def partitionBy(
        self, numPartitions: int, partitionFunc: Optional[Callable[[K], int]] = None
    ) -> "LocalCollection[Tuple[K, V]]":
        def identity(pairs: Iterable[Tuple[K, V]]) -> Iterable[Tuple[K, V]]:
            return pairs

        return LocalCollection(self._shuffle(identity, numPartitions, partitionFunc), self.engine)

    def reduceByKey(
        self,
        func: Callable[[V, V], V],
        numPartitions: Optional[int] = None,
        partitionFunc: Optional[Callable[[K], int]] = None,
    ) -> "LocalCollection[Tuple[K, V]]":
        def combine(pairs: Iterable[Tuple[K, V]]) -> Iterable[Tuple[K, V]]:
            merged: Dict[K, V] = {}
            for k, v in pairs:
                merged[k] = func(merged[k], v) if k in merged else v
            return merged.items()

        buckets = self._shuffle(combine, numPartitions, partitionFunc)

        def reduceSide(bucket: List[Tuple[K, V]]) -> List[Tuple[K, V]]:
            return list(combine(bucket))

        return LocalCollection(self.engine._run(reduceSide, buckets), self.engine)

    def groupByKey(
        self,
        numPartitions: Optional[int] = None,
        partitionFunc: Optional[Callable[[K], int]] = None,
    ) -> "LocalCollection[Tuple[K, List[V]]]":
        def identity(pairs: Iterable[Tuple[K, V]]) -> Iterable[Tuple[K, V]]:
            return pairs

        buckets = self._shuffle(identity, numPartitions, partitionFunc)

        def group(bucket: List[Tuple[K, V]]) -> List[Tuple[K, List[V]]]:
            grouped: Dict[K, List[V]] = {}
            for k, v in bucket:
                grouped.setdefault(k, []).append(v)
            return list(grouped.items())

        return LocalCollection(self.engine._run(group, buckets), self.engine)

    def union(self, other: PartitionedCollection[U]) -> "LocalCollection[Union[T, U]]":
        if not isinstance(other, LocalCollection):
            raise TypeError("Cannot union a local collection with %s" % type(other).__name__)
        return LocalCollection(self._partitions + other._partitions, self.engine)

    def treeAggregate(
        self,
        zeroValue: U,
        seqOp: Callable[[U, T], U],
        combOp: Callable[[U, U], U],
        depth: int = 2,
    ) -> U:
        if depth < 1:
            raise ValueError("Depth cannot be smaller than 1 but got %d." % depth)

        if self.getNumPartitions() == 0:
            return zeroValue

        def aggregatePartition(partition: Tuple[T, ...]) -> U:
            acc = copy.deepcopy(zeroValue)
            for obj in partition:
                acc = seqOp(acc, obj)
            return acc

        partiallyAggregated: List[U] = self.engine._run(aggregatePartition, self._partitions)
        numPartitions = len(partiallyAggregated)
        scale = max(int(ceil(pow(numPartitions, 1.0 / depth))), 2)
        while numPartitions > scale + numPartitions / scale:
            curNumPartitions = int(numPartitions / scale)
            groups: List[List[U]] = [[] for _ in range(curNumPartitions)]
            for i, obj in enumerate(partiallyAggregated):
                groups[i % curNumPartitions].append(obj)

            def combineGroup(group: List[U]) -> U:
                acc = group[0]
                for obj in group[1:]:
                    acc = combOp(acc, obj)
                return acc

            partiallyAggregated = self.engine._run(combineGroup, groups)
            numPartitions = len(partiallyAggregated)

        result = partiallyAggregated[0]
        for obj in partiallyAggregated[1:]:
            result = combOp(result, obj)
        return result

    def collect(self) -> List[T]:
        return list(chain.from_iterable(self._partitions))

    def take(self, num: int) -> List[T]:
        taken: List[T] = []
        for partition in self._partitions:
            taken.extend(partition[: num - len(taken)])
            if len(taken) >= num:
                break
        return taken

    def count(self) -> int:
        return sum(len(p) for p in self._partitions)


class LocalEngine(Engine):
    """
    Runs :class:`LocalCollection` tasks on a thread pool. NumPy releases the
    GIL inside its linear algebra routines, so the blocks of a matrix are
    multiplied and factorized in parallel.

    Parameters
    ----------
    parallelism : int, optional
        number of worker threads, also the default number of partitions.
    """

    def __init__(self, parallelism: int = 4):
        if parallelism < 1:
            raise ValueError("parallelism must be positive but got %d" % parallelism)
        self._parallelism = parallelism
        self._executor = ThreadPoolExecutor(max_workers=parallelism, thread_name_prefix="rsvd")

    @property
    def defaultParallelism(self) -> int:
        return self._parallelism

    def parallelize(
        self, data: Iterable[T], numSlices: Optional[int] = None
    ) -> LocalCollection[T]:
        items = list(data)
        numSlices = max(numSlices or self._parallelism, 1)
        size = len(items)
        partitions = [
            items[i * size // numSlices : (i + 1) * size // numSlices] for i in range(numSlices)
        ]
        return LocalCollection(partitions, self)

    def _run(self, task: Callable[[Any], U], partitions: Sequence[Any]) -> List[U]:
        # Exceptions raised by a task propagate from ``result()``.
        return list(self._executor.map(task, partitions))

    def stop(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "LocalEngine":
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()


def toCollection(
    data: Union[RDD, PartitionedCollection[T]], engine: Optional[Engine] = None
) -> PartitionedCollection[T]:
    """
    Wraps an RDD into an :class:`RDDCollection`; partitioned collections are
    returned unchanged.
    """
    if isinstance(data, PartitionedCollection):
        return data
    if isinstance(data, RDD):
        sparkEngine = engine if isinstance(engine, SparkEngine) else None
        return RDDCollection(data, sparkEngine)
    raise TypeError("Expected an RDD or a PartitionedCollection but got %s" % type(data).__name__)


def _test() -> None:
    import doctest
    import sys
    import sparkrsvd.collection

    globs = sparkrsvd.collection.__dict__.copy()
    (failure_count, test_count) = doctest.testmod(
        sparkrsvd.collection, globs=globs, optionflags=doctest.ELLIPSIS
    )
    if failure_count:
        sys.exit(-1)


if __name__ == "__main__":
    _test()
