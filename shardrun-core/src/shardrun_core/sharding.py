"""Shard planning: partition test files into balanced shards.

Strategies:
    round-robin: file at original index i goes to shard i mod K.
    size-balanced: Longest-Processing-Time-first on file size.
    duration-balanced: LPT on estimated duration; identical to size-balanced
        when no file carries a duration estimate.

LPT sorts files by key descending (stable, so equal keys keep their original
order) and assigns each to the shard with the smallest running total, ties
going to the lowest shard id.

Example:
    >>> files = [TestFile(f"t{i}.spec.ts", size=100) for i in range(6)]
    >>> plan = ShardPlanner().plan(files, 3, ShardStrategy.ROUND_ROBIN)
    >>> [[f.path for f in s.files] for s in plan.shards][0]
    ['t0.spec.ts', 't3.spec.ts']
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from shardrun_core.errors import EmptyInputError, InvalidArgumentError
from shardrun_core.types.shard import Shard, TestFile


class ShardStrategy(str, Enum):
    """Shard planning strategy."""

    ROUND_ROBIN = "round-robin"
    SIZE_BALANCED = "size-balanced"
    DURATION_BALANCED = "duration-balanced"

    @classmethod
    def parse(cls, name: str | ShardStrategy) -> ShardStrategy:
        """Parse a strategy name, accepting the legacy aliases.

        Raises:
            InvalidArgumentError: If the name is unknown.
        """
        if isinstance(name, ShardStrategy):
            return name
        normalized = name.strip().lower()
        aliases = {"balanced": cls.SIZE_BALANCED, "duration-based": cls.DURATION_BALANCED}
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError as e:
            choices = ", ".join(s.value for s in cls)
            raise InvalidArgumentError(
                f"Unknown sharding strategy {name!r} (choose from: {choices})"
            ) from e


@dataclass(frozen=True)
class ShardPlan:
    """Result of shard planning.

    Attributes:
        shards: Shards ordered by id 0..K-1.
        strategy: Strategy that produced the plan.
        balance_score: Evenness in [0, 1]; 1.0 is perfectly even.
    """

    shards: tuple[Shard, ...]
    strategy: ShardStrategy
    balance_score: float

    @property
    def total_shards(self) -> int:
        """Return the number of shards."""
        return len(self.shards)


@dataclass(frozen=True)
class ShardStats:
    """Duration statistics of a shard plan (milliseconds)."""

    total_files: int
    total_duration: float
    avg_duration: float
    min_duration: float
    max_duration: float
    duration_variance: float


class ShardPlanner:
    """Partitions test files into shards.

    The planner is pure: the same inputs always give the same plan.
    """

    def plan(
        self,
        files: Sequence[TestFile],
        shard_count: int,
        strategy: ShardStrategy | str = ShardStrategy.DURATION_BALANCED,
    ) -> ShardPlan:
        """Partition files into at most shard_count shards.

        Args:
            files: Discovered test files, in discovery order.
            shard_count: Requested number of shards K.
            strategy: Planning strategy.

        Returns:
            A ShardPlan with min(K, len(files)) non-empty shards.

        Raises:
            InvalidArgumentError: If shard_count < 1 or the strategy is unknown.
            EmptyInputError: If files is empty.
        """
        if not files:
            raise EmptyInputError("Cannot create shards from an empty file list")
        if shard_count < 1:
            raise InvalidArgumentError(f"Shard count must be at least 1, got {shard_count}")

        strategy = ShardStrategy.parse(strategy)
        count = min(shard_count, len(files))

        if strategy is ShardStrategy.ROUND_ROBIN:
            buckets = self._round_robin(files, count)
        elif strategy is ShardStrategy.SIZE_BALANCED or not _has_estimates(files):
            buckets = self._lpt(files, count, key=lambda f: f.size)
        else:
            buckets = self._lpt(files, count, key=lambda f: f.estimated_duration or 0.0)

        shards = tuple(Shard.from_files(i, bucket) for i, bucket in enumerate(buckets))
        return ShardPlan(shards=shards, strategy=strategy, balance_score=balance_score(shards))

    @staticmethod
    def _round_robin(files: Sequence[TestFile], count: int) -> list[list[TestFile]]:
        buckets: list[list[TestFile]] = [[] for _ in range(count)]
        for index, f in enumerate(files):
            buckets[index % count].append(f)
        return buckets

    @staticmethod
    def _lpt(
        files: Sequence[TestFile], count: int, key: Callable[[TestFile], float]
    ) -> list[list[TestFile]]:
        buckets: list[list[TestFile]] = [[] for _ in range(count)]
        totals = [0.0] * count
        for f in sorted(files, key=key, reverse=True):
            # min() returns the first minimum, i.e. the lowest shard id on ties
            target = min(range(count), key=lambda i: totals[i])
            buckets[target].append(f)
            totals[target] += key(f)
        return buckets


def _has_estimates(files: Sequence[TestFile]) -> bool:
    return any(f.estimated_duration is not None for f in files)


def balance_score(shards: Sequence[Shard]) -> float:
    """Return min/max of per-shard duration, or of file counts without durations.

    Returns 1.0 for an empty plan or when every shard is empty.
    """
    if not shards:
        return 1.0
    durations = [s.estimated_duration for s in shards]
    if max(durations) > 0:
        return min(durations) / max(durations)
    counts = [len(s.files) for s in shards]
    if max(counts) == 0:
        return 1.0
    return min(counts) / max(counts)


def shard_stats(shards: Sequence[Shard]) -> ShardStats:
    """Return duration statistics of a plan.

    Raises:
        EmptyInputError: If shards is empty.
    """
    if not shards:
        raise EmptyInputError("Cannot compute statistics of an empty plan")
    durations = [s.estimated_duration for s in shards]
    total = sum(durations)
    avg = total / len(durations)
    variance = sum((d - avg) ** 2 for d in durations) / len(durations)
    return ShardStats(
        total_files=sum(len(s.files) for s in shards),
        total_duration=total,
        avg_duration=avg,
        min_duration=min(durations),
        max_duration=max(durations),
        duration_variance=variance,
    )


def optimal_shard_count(file_count: int, max_parallelism: int, files_per_shard: int = 3) -> int:
    """Suggest a shard count for a file count and a parallelism cap.

    Small suites get one file per shard; larger ones aim for a few files per
    shard, capped at max_parallelism.
    """
    if file_count <= max_parallelism:
        return file_count
    return min(math.ceil(file_count / files_per_shard), max_parallelism)


def describe_plan(plan: ShardPlan, width: int = 40) -> str:
    """Render a plan as a text bar chart."""
    stats = shard_stats(plan.shards)
    longest = stats.max_duration or 1.0
    rule = "-" * 60
    lines = ["Shard Distribution:", rule]
    for shard in plan.shards:
        bar = "#" * round(shard.estimated_duration / longest * width)
        lines.append(
            f"Shard {shard.id}: {bar} {shard.estimated_duration / 1000:.1f}s "
            f"({len(shard.files)} files)"
        )
    lines.append(rule)
    lines.append(f"Strategy: {plan.strategy.value}")
    lines.append(f"Balance Score: {plan.balance_score:.3f}")
    lines.append(f"Avg Duration: {stats.avg_duration / 1000:.1f}s")
    lines.append(
        f"Range: {stats.min_duration / 1000:.1f}s - {stats.max_duration / 1000:.1f}s"
    )
    return "\n".join(lines)
