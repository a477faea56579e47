"""Builders for small cartridge layouts used across the tests."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence

from nescdl.address_space import AddressSpace, Region
from nescdl.banks import Bank, BankSet
from nescdl.cdl import CdlStore
from nescdl.config import AnalysisConfig
from nescdl.engine import AnalysisEngine, QueueOrder

# Trimmed-down NES layout: RAM, a few PPU/APU registers, PRG ROM
NES_REGIONS = [
    Region(0x0000, 0x800, readable=True, writable=True, executable=True),
    Region(0x2000, 1, writable=True),
    Region(0x2001, 1, writable=True),
    Region(0x2002, 1, readable=True),
    Region(0x2007, 1, readable=True, writable=True),
    Region(0x4014, 1, writable=True),
    Region(0x4016, 1, readable=True, writable=True),
    Region(0x8000, 0x8000, readable=True, writable=True, executable=True),
]

# ISC abs,X: undocumented, so untouched filler is never trusted as code
FILL = 0xFF

VECTORS_ONLY_RESET = AnalysisConfig(use_nmi=False, use_irq=False)
NO_VECTORS = AnalysisConfig(use_nmi=False, use_reset=False, use_irq=False)


class Rom:
    """
    PRG image laid out bank after bank in one file, with a matching CDL.

    Usage:
        rom = Rom()
        rom.add_bank("PRG7", 0xC000, fixed=True)
        rom.write(0xC000, [0x78, 0x4C, 0x01, 0xC0])
        rom.set_vector(0xFFFC, 0xC000)
        banks = rom.bank_set()
    """

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root) if root is not None else Path("rom")
        self.banks: List[Bank] = []
        self.images: Dict[str, bytearray] = {}
        self._next_offset = 0

    @property
    def prg_path(self) -> Path:
        return self.root / "prg.bin"

    @property
    def cdl_path(self) -> Path:
        return self.root / "prg.cdl"

    def add_bank(self, name: str, start: int, size: int = 0x4000,
                 fixed: bool = False) -> Bank:
        bank = Bank(name=name, start=start, size=size,
                    file=self.prg_path, cdl=self.cdl_path,
                    file_offset=self._next_offset,
                    cdl_offset=self._next_offset, fixed=fixed)
        self._next_offset += size
        self.banks.append(bank)
        self.images[name] = bytearray([FILL]) * size
        return bank

    def _bank_at(self, addr: int, bank: Optional[str]) -> Bank:
        for b in self.banks:
            if (bank is None or b.name == bank) and b.contains(addr):
                return b
        raise KeyError(f"no bank at ${addr:04X}")

    def write(self, addr: int, data: Sequence[int],
              bank: Optional[str] = None) -> None:
        b = self._bank_at(addr, bank)
        local = addr - b.start
        self.images[b.name][local:local + len(data)] = bytes(data)

    def set_vector(self, vector: int, target: int,
                   bank: Optional[str] = None) -> None:
        self.write(vector, [target & 0xFF, target >> 8], bank)

    def image(self) -> bytes:
        return b"".join(bytes(self.images[b.name]) for b in self.banks)

    def save(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        self.prg_path.write_bytes(self.image())
        return self.prg_path

    def bank_set(self) -> BankSet:
        return BankSet(self.banks, {name: bytes(img)
                                    for name, img in self.images.items()})

    def cdl_offset(self, addr: int, bank: Optional[str] = None) -> int:
        b = self._bank_at(addr, bank)
        return b.cdl_offset + (addr - b.start)


def make_engine(rom: Rom, cfg: Optional[AnalysisConfig] = None,
                regions: Sequence[Region] = NES_REGIONS,
                order: QueueOrder = QueueOrder.FIFO) -> AnalysisEngine:
    banks = rom.bank_set()
    cdl = CdlStore.for_banks(banks)
    return AnalysisEngine(AddressSpace.build(regions), banks, cdl,
                          cfg or VECTORS_ONLY_RESET, order=order)


def code_addresses(engine: AnalysisEngine, rom: Rom) -> List[int]:
    """CPU addresses (in declaration order of banks) whose CDL byte is Code."""
    found = []
    for bank in rom.banks:
        for local in range(bank.size):
            if engine.cdl.is_code(bank.cdl, bank.cdl_offset + local):
                found.append(bank.start + local)
    return found
