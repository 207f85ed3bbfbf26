"""
Scale adapters consumed by the selection engine.

A host scale is either discrete (banded: exposes `bandwidth()`) or continuous
(exposes `invert(pixel)`). Both map a key to a pixel through `position_of(key)`
or by being callable. `adapt_scale()` detects which capability is present and
wraps the scale in the matching adapter.

BandScale and LinearScale are small reference implementations of the two
variants for hosts that do not bring their own.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Tuple

from .validation import ConfigurationError

logger = logging.getLogger(__name__)


def _position_fn(scale: Any) -> Optional[Callable[[Any], Any]]:
    fn = getattr(scale, "position_of", None)
    if callable(fn):
        return fn
    if callable(scale):
        return scale
    return None


class ScaleAdapter(ABC):
    """Maps dataset keys to pixel positions used for selection tests."""

    kind: str = ""

    def __init__(self, scale: Any, position_fn: Callable[[Any], Any]) -> None:
        self.scale = scale
        self._position_fn = position_fn

    def _raw_position(self, key: Any) -> Optional[float]:
        try:
            pos = self._position_fn(key)
        except (KeyError, ValueError, TypeError, IndexError):
            return None
        if pos is None:
            return None
        try:
            pos = float(pos)
        except (TypeError, ValueError):
            return None
        return pos if math.isfinite(pos) else None

    @abstractmethod
    def position(self, key: Any) -> Optional[float]:
        """Pixel position of `key` for selection purposes, or None if unmappable."""

    @abstractmethod
    def bounds(self, low: float, high: float) -> Tuple[Any, Any]:
        """Express a pixel range in the scale's data space."""


class DiscreteScaleAdapter(ScaleAdapter):
    kind = "discrete"

    def bandwidth(self) -> float:
        return float(self.scale.bandwidth())

    def position(self, key: Any) -> Optional[float]:
        start = self._raw_position(key)
        if start is None:
            return None
        try:
            return start + self.bandwidth() / 2
        except (TypeError, ValueError):
            return None

    def bounds(self, low: float, high: float) -> Tuple[float, float]:
        # Band scales have no inverse; the pixel range is the best description
        return low, high


class ContinuousScaleAdapter(ScaleAdapter):
    kind = "continuous"

    def invert(self, pixel: float) -> Any:
        return self.scale.invert(pixel)

    def position(self, key: Any) -> Optional[float]:
        return self._raw_position(key)

    def bounds(self, low: float, high: float) -> Tuple[Any, Any]:
        a, b = self.invert(low), self.invert(high)
        try:
            return (a, b) if a <= b else (b, a)
        except TypeError:
            return a, b


def adapt_scale(scale: Any) -> ScaleAdapter:
    """
    Wrap a host scale in the adapter matching its capabilities.

    Raises:
        ConfigurationError: If the scale cannot map keys, or exposes neither
            `bandwidth` nor `invert`
    """
    if isinstance(scale, ScaleAdapter):
        return scale

    position_fn = _position_fn(scale)
    if position_fn is None:
        raise ConfigurationError(
            f"Scale {type(scale).__name__} must expose position_of() or be callable"
        )
    if callable(getattr(scale, "bandwidth", None)):
        return DiscreteScaleAdapter(scale, position_fn)
    if callable(getattr(scale, "invert", None)):
        return ContinuousScaleAdapter(scale, position_fn)
    raise ConfigurationError(
        f"Scale {type(scale).__name__} must provide bandwidth() or invert()"
    )


class BandScale:
    """
    Discrete scale dividing a pixel range into equal bands, one per category.

    Follows the usual band-scale layout: `step` is the distance between band
    starts, `bandwidth` is `step * (1 - padding_inner)`, and leftover space
    from the outer padding is distributed according to `align`.
    """

    def __init__(
        self,
        domain: Iterable[Any],
        range: Tuple[float, float] = (0.0, 800.0),
        padding: float = 0.1,
        padding_inner: Optional[float] = None,
        padding_outer: Optional[float] = None,
        align: float = 0.5,
    ) -> None:
        self.domain = list(dict.fromkeys(domain))
        self.range = (float(range[0]), float(range[1]))
        self.padding_inner = padding if padding_inner is None else padding_inner
        self.padding_outer = padding if padding_outer is None else padding_outer
        self.align = min(1.0, max(0.0, align))
        self._index: Dict[Any, int] = {k: i for i, k in enumerate(self.domain)}
        self._layout()

    def _layout(self) -> None:
        n = len(self.domain)
        r0, r1 = self.range
        reverse = r1 < r0
        start, stop = (r1, r0) if reverse else (r0, r1)
        self._step = (stop - start) / max(1.0, n - self.padding_inner + self.padding_outer * 2)
        start += (stop - start - self._step * (n - self.padding_inner)) * self.align
        self._bandwidth = self._step * (1 - self.padding_inner)
        starts = [start + self._step * i for i in range(n)]
        self._starts = starts[::-1] if reverse else starts

    def __call__(self, key: Any) -> float:
        return self.position_of(key)

    def position_of(self, key: Any) -> float:
        try:
            return self._starts[self._index[key]]
        except KeyError:
            raise KeyError(f"{key!r} is not in the band scale domain") from None

    def bandwidth(self) -> float:
        return self._bandwidth

    def step(self) -> float:
        return self._step


class LinearScale:
    """Continuous scale mapping a numeric domain linearly onto a pixel range."""

    def __init__(
        self,
        domain: Tuple[float, float] = (0.0, 1.0),
        range: Tuple[float, float] = (0.0, 800.0),
        clamp: bool = False,
    ) -> None:
        self.domain = (float(domain[0]), float(domain[1]))
        self.range = (float(range[0]), float(range[1]))
        self.clamp = clamp

    @classmethod
    def from_values(
        cls,
        values: Sequence[float],
        range: Tuple[float, float] = (0.0, 800.0),
        include_zero: bool = True,
        clamp: bool = False,
    ) -> "LinearScale":
        """Build a scale whose domain spans `values` (and 0 when include_zero)."""
        finite = [float(v) for v in values if math.isfinite(float(v))]
        if include_zero:
            finite.append(0.0)
        if not finite:
            return cls((0.0, 1.0), range, clamp)
        return cls((min(finite), max(finite)), range, clamp)

    def __call__(self, value: Any) -> float:
        return self.position_of(value)

    def position_of(self, value: Any) -> float:
        d0, d1 = self.domain
        r0, r1 = self.range
        v = float(value)
        if d0 == d1:
            return (r0 + r1) / 2
        t = (v - d0) / (d1 - d0)
        if self.clamp:
            t = min(1.0, max(0.0, t))
        return r0 + t * (r1 - r0)

    def invert(self, pixel: float) -> float:
        d0, d1 = self.domain
        r0, r1 = self.range
        if r0 == r1:
            return (d0 + d1) / 2
        t = (float(pixel) - r0) / (r1 - r0)
        if self.clamp:
            t = min(1.0, max(0.0, t))
        return d0 + t * (d1 - d0)
