"""Typed values that render with units when passed to a structured logger."""

from typing import NamedTuple

from rich.pretty import pretty_repr


class Pretty(NamedTuple):
  value: object

  def __str__(self) -> str:
    return pretty_repr(self.value)


class Unit(NamedTuple):
  value: float


class Seconds(Unit):
  def __str__(self) -> str:
    return f"{self.value:.3f}s"


class Milliseconds(Unit):
  def __str__(self) -> str:
    return f"{self.value:.1f}ms"


class Bytes(Unit):
  def __str__(self) -> str:
    if self.value >= 1024 * 1024:
      return f"{self.value / (1024 * 1024):.2f}MiB"
    if self.value >= 1024:
      return f"{self.value / 1024:.1f}KiB"
    return f"{int(self.value)}B"
