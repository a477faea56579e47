from __future__ import annotations

import argparse
import json

import pytest

from nescdl.__main__ import main, parse_address
from nescdl.cdl import CdlKind

from .helpers import Rom

MANIFEST = """
memory = [
    { start = 0, len = 0x800, readable = true, writable = true, executable = true },
    { start = 0x8000, len = 0x8000, readable = true, executable = true },
]

[[banks]]
name = "PRG0"
start = 0x8000
len = 0x4000
file = "prg.bin"
file_offset = 0
cdl = "prg.cdl"
cdl_offset = 0

[[banks]]
name = "PRG7"
start = 0xC000
len = 0x4000
file = "prg.bin"
file_offset = 0x4000
cdl = "prg.cdl"
cdl_offset = 0x4000
fixed = true

[config.analysis]
use_nmi = false
use_irq = false
"""


@pytest.fixture
def project(tmp_path):
    rom = Rom(tmp_path)
    rom.add_bank("PRG0", 0x8000)
    rom.add_bank("PRG7", 0xC000, fixed=True)
    rom.write(0xC000, [0x20, 0x00, 0x80,    # jsr $8000
                       0x4C, 0x03, 0xC0])   # jmp *
    rom.write(0x8000, [0xEA, 0x60])         # nop; rts
    rom.set_vector(0xFFFC, 0xC000)
    rom.save()
    manifest = tmp_path / "disnes.toml"
    manifest.write_text(MANIFEST, encoding="utf-8")
    return rom, manifest


def run(argv) -> int:
    with pytest.raises(SystemExit) as exc:
        main(argv)
    return exc.value.code


def test_analysis_writes_cdl_and_summary(project, tmp_path, capsys) -> None:
    rom, manifest = project
    out = tmp_path / "out"

    assert run([str(manifest), "-o", str(out)]) == 0

    cdl = rom.cdl_path.read_bytes()
    assert len(cdl) == 0x8000
    for addr in (0xC000, 0xC005, 0x8000, 0x8001):
        assert cdl[rom.cdl_offset(addr)] & CdlKind.CODE
    assert not cdl[rom.cdl_offset(0x8002)] & CdlKind.CODE
    assert cdl[rom.cdl_offset(0xFFFC)] & CdlKind.DATA

    summary = json.loads((out / "summary.json").read_text())
    assert summary["total_accepted"] == 4
    assert summary["cdl_files_written"] == [str(rom.cdl_path)]
    assert [row["name"] for row in summary["banks"]] == ["PRG0", "PRG7"]
    assert "Done in" in capsys.readouterr().out


def test_dry_run_leaves_cdl_alone(project) -> None:
    rom, manifest = project
    assert run([str(manifest), "--dry-run", "-j", "2", "--order", "lifo"]) == 0
    assert not rom.cdl_path.exists()


def test_fixed_bank_selection(project) -> None:
    rom, manifest = project
    assert run([str(manifest), "--bank", "PRG7"]) == 0
    cdl = rom.cdl_path.read_bytes()
    # PRG0 is not mapped, so the call target is never decoded
    assert cdl[rom.cdl_offset(0xC000)] & CdlKind.CODE
    assert not cdl[rom.cdl_offset(0x8000)] & CdlKind.CODE


def test_extra_entry_point(project) -> None:
    rom, manifest = project
    rom.write(0xD000, [0x60])
    rom.save()
    assert run([str(manifest), "-e", "$D000"]) == 0
    assert rom.cdl_path.read_bytes()[rom.cdl_offset(0xD000)] & CdlKind.CODE


def test_missing_manifest_exits_with_error(tmp_path, capsys) -> None:
    assert run([str(tmp_path / "missing.toml")]) == 1
    assert "manifest not found" in capsys.readouterr().err


def test_unknown_bank_exits_with_error(project, capsys) -> None:
    _, manifest = project
    assert run([str(manifest), "--bank", "PRG9"]) == 1
    assert "PRG9" in capsys.readouterr().err


def test_invalid_manifest_exits_with_error(tmp_path, capsys) -> None:
    manifest = tmp_path / "disnes.toml"
    manifest.write_text("banks = 3\n", encoding="utf-8")
    assert run([str(manifest)]) == 1
    assert "array of tables" in capsys.readouterr().err


def test_bad_worker_count_is_a_usage_error(project) -> None:
    _, manifest = project
    assert run([str(manifest), "-j", "0"]) == 2


@pytest.mark.parametrize("text,value", [
    ("0xC000", 0xC000),
    ("$fffc", 0xFFFC),
    ("32768", 0x8000),
])
def test_parse_address(text, value) -> None:
    assert parse_address(text) == value


@pytest.mark.parametrize("text", ["0x10000", "-1", "$", "reset"])
def test_parse_address_rejects(text) -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        parse_address(text)
