"""
Fold and tree-reduce driver for mergeable accumulators.

Everything here is written against a monoid: an ``empty()`` factory and an
associative ``combine(a, b)``. Partition results are folded privately and then
merged level by level, ``split_every`` partials per merge task, so the number of
sequential merges is bounded by the depth of the tree.

Two entry points evaluate an aggregator over data:

    aggregate_local(data, aggregator)              # in-memory iterable
    aggregate_distributed(bag, aggregator, depth)  # dask.bag.Bag

Both fold examples with ``aggregator.add`` and merge partials with
``aggregator.combine``; they differ only in floating point summation order.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional

import dask.bag as db

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Monoid:
    empty: Callable[[], Any]
    combine: Callable[[Any, Any], Any]


def accumulator_monoid(zero) -> Monoid:
    """Monoid over any accumulator exposing ``empty()`` and ``combine(other)``."""
    return Monoid(empty=zero.empty, combine=_combine_pair)


def fold(items: Iterable, seq_op: Callable[[Any, Any], Any], zero):
    acc = zero
    for item in items:
        acc = seq_op(acc, item)
    return acc


def tree_reduce(values: Iterable, monoid: Monoid, split_every: int = 8):
    """
    Reduce a list of partial results with a balanced tree of fan-in ``split_every``.

    An empty input reduces to ``monoid.empty()``.
    """
    if split_every < 2:
        raise ValueError(f"split_every must be >= 2, got {split_every}")
    values = list(values)
    if not values:
        return monoid.empty()
    level = 0
    while len(values) > 1:
        values = [_reduce_group(monoid, values[i:i + split_every]) for i in range(0, len(values), split_every)]
        level += 1
    log.debug("tree_reduce: %d levels, split_every=%d", level, split_every)
    return values[0]


def split_every_for_depth(num_partitions: int, depth: int) -> int:
    """Fan-in which produces a reduction tree of (at most) ``depth`` levels."""
    if depth < 1:
        raise ValueError(f"Tree aggregate depth must be >= 1, got {depth}")
    return max(int(math.ceil(num_partitions ** (1.0 / depth))), 2)


def tree_aggregate(bag: db.Bag, monoid: Monoid, seq_op: Callable[[Any, Any], Any], depth: int = 1,
                   scheduler: Optional[str] = None):
    """
    Fold every partition of ``bag`` from ``monoid.empty()`` with ``seq_op``, then
    merge the partition results with a tree of the requested depth.

    A failing partition fails the whole computation; no partial result is returned.
    """
    split_every = split_every_for_depth(bag.npartitions, depth)
    log.debug("tree_aggregate: %d partitions, depth=%d -> split_every=%d", bag.npartitions, depth, split_every)

    def per_partition(items):
        return fold(items, seq_op, monoid.empty())

    def aggregate(partials):
        return _reduce_group(monoid, list(partials))

    reduced = bag.reduction(per_partition, aggregate, split_every=split_every)
    return reduced.compute(scheduler=scheduler) if scheduler else reduced.compute()


# ---------------------------------------
# Aggregator entry points
# ---------------------------------------

def aggregate_local(data: Iterable, aggregator, num_shards: int = 1, depth: int = 1, scheduler: str = "sync"):
    """
    Evaluate a bound aggregator over an in-memory collection.

    With ``num_shards == 1`` the data is folded sequentially into a copy of
    ``aggregator``; otherwise it is split into ``num_shards`` partitions which
    are folded and tree-merged, with a tree of ``depth`` levels, through the
    same path as distributed data.
    """
    if num_shards < 1:
        raise ValueError(f"num_shards must be >= 1, got {num_shards}")
    if num_shards == 1:
        return fold(data, _add, aggregator.empty())
    bag = db.from_sequence(list(data), npartitions=num_shards)
    return aggregate_distributed(bag, aggregator, depth=depth, scheduler=scheduler)


def aggregate_distributed(bag: db.Bag, aggregator, depth: int = 1, scheduler: Optional[str] = None):
    """
    Evaluate a bound aggregator over a partitioned ``dask.bag.Bag``.

    The bound aggregator carries the coefficients and normalization; it is
    shipped once with each partition task, never per example.
    """
    return tree_aggregate(bag, accumulator_monoid(aggregator), _add, depth=depth, scheduler=scheduler)


def _add(acc, datum):
    return acc.add(datum)


def _combine_pair(a, b):
    return a.combine(b)


def _reduce_group(monoid: Monoid, items: List):
    if not items:
        return monoid.empty()
    result = items[0]
    for item in items[1:]:
        result = monoid.combine(result, item)
    return result
