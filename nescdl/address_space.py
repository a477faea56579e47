"""
Per-byte access permissions for the 64KB CPU address space.

Regions are folded in declaration order into one immutable table, so the
last region covering a byte decides its permissions. Addresses covered by
no region have no permissions at all.
"""

from dataclasses import dataclass
from functools import reduce
from typing import Iterable, Sequence

from . import config
from .errors import ConfigError


@dataclass(frozen=True)
class Region:
    """One `memory` entry of the manifest."""
    start: int
    size: int
    readable: bool = False
    writable: bool = False
    executable: bool = False

    def __post_init__(self):
        if not 0 <= self.start < config.ADDRESS_SPACE_SIZE:
            raise ConfigError(f"region start out of range: {self.start:#X}")
        if self.size < 1:
            raise ConfigError(
                f"region at {self.start:#06X} has non-positive length {self.size}")
        if self.end > config.ADDRESS_SPACE_SIZE:
            raise ConfigError(
                f"region overflows the address space "
                f"(start={self.start:#X}, len={self.size:#X})")

    @property
    def end(self) -> int:
        return self.start + self.size

    @property
    def flags(self) -> int:
        return ((config.PERM_READ if self.readable else 0)
                | (config.PERM_WRITE if self.writable else 0)
                | (config.PERM_EXEC if self.executable else 0))


@dataclass(frozen=True)
class Permission:
    readable: bool = False
    writable: bool = False
    executable: bool = False

    @classmethod
    def from_flags(cls, flags: int) -> "Permission":
        return cls(
            readable=bool(flags & config.PERM_READ),
            writable=bool(flags & config.PERM_WRITE),
            executable=bool(flags & config.PERM_EXEC),
        )


def _apply_region(table: bytearray, region: Region) -> bytearray:
    table[region.start:region.end] = bytes([region.flags]) * region.size
    return table


class AddressSpace:
    """
    Immutable permission table, one flag byte per address.

    Read-only after construction, so it can be shared by concurrent
    analysis workers without locking.
    """

    def __init__(self, table: bytes):
        if len(table) != config.ADDRESS_SPACE_SIZE:
            raise ConfigError(
                f"permission table must cover {config.ADDRESS_SPACE_SIZE:#X} "
                f"addresses, got {len(table):#X}")
        self._table = bytes(table)

    @classmethod
    def build(cls, regions: Sequence[Region]) -> "AddressSpace":
        """Fold regions in order; later regions win on overlap."""
        table = reduce(_apply_region, regions,
                       bytearray(config.ADDRESS_SPACE_SIZE))
        return cls(bytes(table))

    def __len__(self) -> int:
        return len(self._table)

    def _flags(self, addr: int) -> int:
        if not 0 <= addr < config.ADDRESS_SPACE_SIZE:
            raise IndexError(f"address out of range: {addr:#X}")
        return self._table[addr]

    def permissions(self, addr: int) -> Permission:
        return Permission.from_flags(self._flags(addr))

    def is_readable(self, addr: int) -> bool:
        return bool(self._flags(addr) & config.PERM_READ)

    def is_writable(self, addr: int) -> bool:
        return bool(self._flags(addr) & config.PERM_WRITE)

    def is_executable(self, addr: int) -> bool:
        return bool(self._flags(addr) & config.PERM_EXEC)

    def all_executable(self, addr: int, count: int) -> bool:
        """True if `count` bytes from `addr` are executable without wrapping."""
        if addr < 0 or addr + count > config.ADDRESS_SPACE_SIZE:
            return False
        return all(flags & config.PERM_EXEC
                   for flags in self._table[addr:addr + count])

    def any_readable(self, addrs: Iterable[int]) -> bool:
        return any(self.is_readable(a) for a in addrs)

    def any_writable(self, addrs: Iterable[int]) -> bool:
        return any(self.is_writable(a) for a in addrs)

    def executable_count(self) -> int:
        return sum(1 for flags in self._table if flags & config.PERM_EXEC)
