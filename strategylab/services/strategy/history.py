"""Zero-copy prefix views over a bar array."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Callable, Hashable, Optional, Union, overload

from strategylab.services.strategy.models import Bar

SeriesFn = Callable[[Sequence[Bar]], Sequence[Any]]


class BarHistory(Sequence):
    """Read-only view of ``bars[:stop]``.

    The scanner evaluates every candidate bar against the full history up to
    that bar. Copying the prefix each time is quadratic, so the scanner hands
    out views instead. Views created from the same array share a cache of
    running indicator series (EMA, OBV, SAR, ...): an indicator that is a
    causal recurrence is computed once over the whole array and read at
    ``stop - 1``, which equals computing it from scratch over the prefix.
    """

    __slots__ = ("_bars", "_stop", "_cache")

    def __init__(
        self,
        bars: Sequence[Bar],
        stop: Optional[int] = None,
        cache: Optional[dict[Hashable, Sequence[Any]]] = None,
    ) -> None:
        if isinstance(bars, BarHistory):
            cache = bars._cache if cache is None else cache
            stop = len(bars) if stop is None else min(stop, len(bars))
            bars = bars._bars
        self._bars = bars
        self._stop = len(bars) if stop is None else max(0, min(stop, len(bars)))
        self._cache: dict[Hashable, Sequence[Any]] = {} if cache is None else cache

    def __len__(self) -> int:
        return self._stop

    @overload
    def __getitem__(self, index: int) -> Bar: ...

    @overload
    def __getitem__(self, index: slice) -> Sequence[Bar]: ...

    def __getitem__(self, index: Union[int, slice]) -> Union[Bar, Sequence[Bar]]:
        if isinstance(index, slice):
            start, stop, step = index.indices(self._stop)
            if start == 0 and step == 1:
                return BarHistory(self._bars, stop, self._cache)
            return [self._bars[i] for i in range(start, stop, step)]

        if index < 0:
            index += self._stop
        if not 0 <= index < self._stop:
            raise IndexError("bar index out of range")
        return self._bars[index]

    def __repr__(self) -> str:
        return f"BarHistory(len={self._stop}, total={len(self._bars)})"

    def prefix(self, stop: int) -> BarHistory:
        """View of the first *stop* bars sharing this view's cache."""
        return BarHistory(self._bars, stop, self._cache)

    def running(self, key: Hashable, compute: SeriesFn) -> Sequence[Any]:
        """Full-array series for *key*, computed once per underlying array."""
        series = self._cache.get(key)
        if series is None:
            series = compute(self._bars)
            self._cache[key] = series
        return series


def running_value(bars: Sequence[Bar], key: Hashable, compute: SeriesFn) -> Any:
    """Value of a causal series at the last bar of *bars*.

    *compute* must map a bar sequence to a series aligned with it whose
    element ``i`` depends only on bars ``0..i``.
    """
    if isinstance(bars, BarHistory):
        series = bars.running(key, compute)
    else:
        series = compute(bars)
    return series[len(bars) - 1]
