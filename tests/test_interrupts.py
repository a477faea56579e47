from __future__ import annotations

import logging

from nescdl.banks import MapperState
from nescdl.config import AnalysisConfig
from nescdl.interrupts import enabled_vectors, entry_points, read_vector

from .helpers import Rom


def test_enabled_vectors_follow_flags() -> None:
    assert [name for name, _ in enabled_vectors(AnalysisConfig())] == [
        "NMI", "RESET", "IRQ"]
    assert enabled_vectors(AnalysisConfig(use_nmi=False, use_irq=False)) == [
        ("RESET", 0xFFFC)]


def test_entry_points_read_from_fixed_bank() -> None:
    rom = Rom()
    rom.add_bank("PRG7", 0xC000, fixed=True)
    rom.set_vector(0xFFFA, 0xC100)
    rom.set_vector(0xFFFC, 0xC000)
    rom.set_vector(0xFFFE, 0xC200)

    seeds = entry_points(rom.bank_set(), MapperState(), AnalysisConfig())

    assert seeds == [
        ("NMI", 0xFFFA, 0xC100),
        ("RESET", 0xFFFC, 0xC000),
        ("IRQ", 0xFFFE, 0xC200),
    ]


def test_vector_in_switchable_bank_warns(caplog) -> None:
    rom = Rom()
    rom.add_bank("PRG0", 0xC000)
    rom.set_vector(0xFFFC, 0xC000)
    banks = rom.bank_set()
    caplog.set_level(logging.WARNING)

    assert read_vector(banks, MapperState.single(banks.get("PRG0")), 0xFFFC) == 0xC000
    assert "switchable" in caplog.text


def test_unmapped_vector_is_skipped(caplog) -> None:
    rom = Rom()
    rom.add_bank("PRG0", 0x8000, fixed=True)
    caplog.set_level(logging.WARNING)

    assert entry_points(rom.bank_set(), MapperState(), AnalysisConfig()) == []
    assert "not mapped" in caplog.text
