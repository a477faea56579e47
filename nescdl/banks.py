"""
Bank overlay for the CPU address space.

A bank binds a window of the address space to a slice of a backing file,
and to a matching slice of a CDL file. Which switchable bank occupies a
window is decided by the mapper, which this module never models: callers
pass a MapperState snapshot into every resolve() call. Fixed banks are
mapped in every snapshot.
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from . import config
from .errors import BankReadError, ConfigError
from .loader import load_banks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Bank:
    """One `[[banks]]` entry of the manifest."""
    name: str
    start: int
    size: int
    file: Path
    cdl: Path
    file_offset: int = 0
    cdl_offset: int = 0
    fixed: bool = False

    def __post_init__(self):
        object.__setattr__(self, "file", Path(self.file))
        object.__setattr__(self, "cdl", Path(self.cdl))

        if not self.name:
            raise ConfigError("bank name must not be empty")
        if self.size < 1 or self.size & (self.size - 1):
            raise ConfigError(
                f"bank '{self.name}': len {self.size:#X} is not a power of two")
        if not 0 <= self.start < config.ADDRESS_SPACE_SIZE:
            raise ConfigError(
                f"bank '{self.name}': start {self.start:#X} out of range")
        if self.start % self.size:
            raise ConfigError(
                f"bank '{self.name}': start {self.start:#06X} is not aligned "
                f"to its len {self.size:#X}")
        if self.end > config.ADDRESS_SPACE_SIZE:
            raise ConfigError(
                f"bank '{self.name}' overflows the address space "
                f"(start={self.start:#X}, len={self.size:#X})")
        if self.file_offset < 0 or self.cdl_offset < 0:
            raise ConfigError(f"bank '{self.name}': negative file offset")

    @property
    def end(self) -> int:
        return self.start + self.size

    @property
    def window(self) -> Tuple[int, int]:
        return (self.start, self.size)

    def contains(self, addr: int) -> bool:
        return self.start <= addr < self.end

    def overlaps(self, other: "Bank") -> bool:
        return self.start < other.end and other.start < self.end

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "start": f"0x{self.start:04X}",
            "len": self.size,
            "file": str(self.file),
            "file_offset": self.file_offset,
            "cdl": str(self.cdl),
            "cdl_offset": self.cdl_offset,
            "fixed": self.fixed,
        }


@dataclass(frozen=True)
class MapperState:
    """
    Snapshot of which switchable bank is active in each window.

    `selection` holds (window_start, bank_name) pairs. `version` lets a
    mapper tag successive snapshots; it takes no part in address lookup.
    """
    selection: Tuple[Tuple[int, str], ...] = ()
    version: int = 0

    @classmethod
    def of(cls, mapping: Mapping[int, str], version: int = 0) -> "MapperState":
        return cls(tuple(sorted(mapping.items())), version)

    @classmethod
    def single(cls, bank: Bank, version: int = 0) -> "MapperState":
        return cls(((bank.start, bank.name),), version)

    def active_bank(self, window_start: int) -> Optional[str]:
        for start, name in self.selection:
            if start == window_start:
                return name
        return None

    def describe(self) -> str:
        if not self.selection:
            return "fixed banks only"
        return ", ".join(f"{name}@${start:04X}" for start, name in self.selection)


def validate_banks(banks: Sequence[Bank]) -> None:
    """Bank names must be unique and fixed banks must not overlap any bank."""
    names = set()
    for bank in banks:
        if bank.name in names:
            raise ConfigError(f"duplicated bank name: '{bank.name}'")
        names.add(bank.name)

    for i, lhs in enumerate(banks):
        for rhs in banks[i + 1:]:
            if (lhs.fixed or rhs.fixed) and lhs.overlaps(rhs):
                raise ConfigError(
                    f"fixed bank must not intersect with another bank: "
                    f"bank '{lhs.name}' and '{rhs.name}'")


class BankSet:
    """
    All declared banks plus their loaded contents.

    Read-only after construction. Per-snapshot address maps are built on
    first use and cached.
    """

    def __init__(self, banks: Sequence[Bank],
                 contents: Mapping[str, Optional[bytes]]):
        self._banks: List[Bank] = list(banks)
        validate_banks(self._banks)
        self._by_name: Dict[str, Bank] = {b.name: b for b in self._banks}

        self._contents: Dict[str, Optional[bytes]] = {}
        for bank in self._banks:
            data = contents.get(bank.name)
            if data is not None and len(data) != bank.size:
                logger.warning(
                    "bank '%s': expected %#x bytes, got %#x; bank is unanalyzable",
                    bank.name, bank.size, len(data))
                data = None
            self._contents[bank.name] = bytes(data) if data is not None else None

        # Keyed by selection; the snapshot version never changes the map
        self._maps: Dict[Tuple[Tuple[int, str], ...], List[Optional[Bank]]] = {}
        self._maps_lock = threading.Lock()

    @classmethod
    def load(cls, banks: Sequence[Bank]) -> "BankSet":
        """Build a BankSet reading every bank from its backing file."""
        return cls(banks, load_banks(banks))

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    def __iter__(self):
        return iter(self._banks)

    def __len__(self) -> int:
        return len(self._banks)

    @property
    def banks(self) -> List[Bank]:
        return list(self._banks)

    @property
    def fixed_banks(self) -> List[Bank]:
        return [b for b in self._banks if b.fixed]

    @property
    def switchable_banks(self) -> List[Bank]:
        return [b for b in self._banks if not b.fixed]

    def get(self, name: str) -> Optional[Bank]:
        return self._by_name.get(name)

    def is_analyzable(self, bank: Bank) -> bool:
        return self._contents.get(bank.name) is not None

    def windows(self) -> Dict[Tuple[int, int], List[Bank]]:
        """Group switchable banks by the window they occupy."""
        groups: Dict[Tuple[int, int], List[Bank]] = {}
        for bank in self.switchable_banks:
            groups.setdefault(bank.window, []).append(bank)
        return groups

    def snapshots(self) -> List[MapperState]:
        """One snapshot per switchable bank, or one fixed-only snapshot."""
        switchable = self.switchable_banks
        if not switchable:
            return [MapperState()]
        return [MapperState.single(b) for b in switchable]

    # ------------------------------------------------------------
    # Address resolution
    # ------------------------------------------------------------

    def _address_map(self, state: MapperState) -> List[Optional[Bank]]:
        key = tuple(sorted(state.selection))
        table = self._maps.get(key)
        if table is not None:
            return table

        with self._maps_lock:
            table = self._maps.get(key)
            if table is None:
                table = self._build_map(state)
                self._maps[key] = table
        return table

    def _build_map(self, state: MapperState) -> List[Optional[Bank]]:
        active = self.fixed_banks
        for window_start, name in state.selection:
            bank = self._by_name.get(name)
            if bank is None:
                raise ConfigError(f"mapper state selects unknown bank '{name}'")
            if bank.start != window_start:
                raise ConfigError(
                    f"bank '{name}' does not start at window ${window_start:04X}")
            if not bank.fixed:
                active.append(bank)

        for i, lhs in enumerate(active):
            for rhs in active[i + 1:]:
                if lhs.overlaps(rhs):
                    raise ConfigError(
                        f"banks '{lhs.name}' and '{rhs.name}' are both active "
                        f"over an overlapping window")

        table: List[Optional[Bank]] = [None] * config.ADDRESS_SPACE_SIZE
        for bank in active:
            table[bank.start:bank.end] = [bank] * bank.size
        return table

    def resolve(self, addr: int,
                state: MapperState) -> Optional[Tuple[Bank, int]]:
        """Return (bank, local_offset) for `addr`, or None if unmapped."""
        bank = self._address_map(state)[addr & config.ADDRESS_MASK]
        if bank is None:
            return None
        return bank, (addr & config.ADDRESS_MASK) - bank.start

    def active_banks(self, state: MapperState) -> List[Bank]:
        seen: Dict[str, Bank] = {}
        for bank in self._address_map(state):
            if bank is not None:
                seen.setdefault(bank.name, bank)
        return list(seen.values())

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    def _data(self, bank: Bank) -> bytes:
        data = self._contents.get(bank.name)
        if data is None:
            raise BankReadError(f"bank '{bank.name}' has no loaded contents")
        return data

    def read_byte(self, bank: Bank, local_offset: int) -> int:
        """Byte at `file_offset + local_offset` of the bank's backing file."""
        if not 0 <= local_offset < bank.size:
            raise BankReadError(
                f"offset {local_offset:#X} outside bank '{bank.name}' "
                f"(len={bank.size:#X})")
        return self._data(bank)[local_offset]

    def read(self, bank: Bank, local_offset: int, count: int) -> bytes:
        """Up to `count` bytes from `local_offset`, never past the bank end."""
        if not 0 <= local_offset < bank.size:
            raise BankReadError(
                f"offset {local_offset:#X} outside bank '{bank.name}' "
                f"(len={bank.size:#X})")
        return self._data(bank)[local_offset:local_offset + count]

    def read_word(self, addr: int, state: MapperState) -> Optional[int]:
        """Little-endian 16-bit value at `addr`; both bytes from one bank."""
        hit = self.resolve(addr, state)
        if hit is None:
            return None
        bank, local = hit
        if local + 1 >= bank.size or not self.is_analyzable(bank):
            return None
        data = self._data(bank)
        return data[local] | (data[local + 1] << 8)

    def cdl_address(self, bank: Bank, local_offset: int) -> Tuple[Path, int]:
        """CDL file and offset matching a byte of the bank."""
        if not 0 <= local_offset < bank.size:
            raise BankReadError(
                f"offset {local_offset:#X} outside bank '{bank.name}' "
                f"(len={bank.size:#X})")
        return bank.cdl, bank.cdl_offset + local_offset
