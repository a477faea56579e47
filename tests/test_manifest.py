from __future__ import annotations

import pytest

from nescdl.config import AnalysisConfig
from nescdl.errors import ConfigError
from nescdl.manifest import load_manifest, parse_manifest

MANIFEST = """
memory = [
    { start = 0, len = 0x800, readable = true, writable = true, executable = true },
    { start = 0x2002, len = 1, readable = true },
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
use_irq = false
allow_brk = true
"""


def test_parse_full_manifest(tmp_path) -> None:
    m = parse_manifest(MANIFEST, base_dir=tmp_path)

    assert len(m.regions) == 3
    assert m.regions[1].start == 0x2002 and m.regions[1].readable
    assert not m.regions[1].executable
    assert m.bank_names() == ["PRG0", "PRG7"]

    prg7 = m.banks[1]
    assert prg7.fixed
    assert prg7.size == 0x4000
    assert prg7.file == tmp_path / "prg.bin"
    assert prg7.cdl_offset == 0x4000

    assert m.analysis == AnalysisConfig(use_irq=False, allow_brk=True)


def test_address_space_from_manifest(tmp_path) -> None:
    space = parse_manifest(MANIFEST, base_dir=tmp_path).address_space()
    assert space.is_executable(0x0100)
    assert not space.is_executable(0x2002)
    assert space.is_readable(0x2002)


def test_config_section_is_optional() -> None:
    text = MANIFEST.split("[config.analysis]")[0]
    assert parse_manifest(text).analysis == AnalysisConfig()


def test_offsets_default_to_zero() -> None:
    m = parse_manifest("""
        [[banks]]
        name = "PRG"
        start = 0x8000
        len = 0x8000
        file = "prg.bin"
        cdl = "prg.cdl"
        fixed = true
    """)
    assert m.banks[0].file_offset == 0
    assert m.banks[0].cdl_offset == 0
    assert m.regions == ()


def test_load_resolves_paths_next_to_manifest(tmp_path) -> None:
    sub = tmp_path / "game"
    sub.mkdir()
    path = sub / "disnes.toml"
    path.write_text(MANIFEST, encoding="utf-8")

    m = load_manifest(path)

    assert m.path == path
    assert m.banks[0].file == sub / "prg.bin"
    assert m.banks[0].cdl == sub / "prg.cdl"


def test_missing_manifest(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_manifest(tmp_path / "nope.toml")


@pytest.mark.parametrize("text,message", [
    ("bogus = 1\n" + MANIFEST, "unknown key"),
    (MANIFEST.replace("readable = true },", "readable = true, color = 1 },", 1),
     "unknown key"),
    (MANIFEST.replace('cdl_offset = 0\n', 'cdl_offset = 0\nmirror = true\n', 1),
     "unknown key"),
    (MANIFEST + "allow_everything = true\n", "unknown key"),
    (MANIFEST.replace("use_irq = false", 'use_irq = "no"'), "true or false"),
    (MANIFEST.replace('len = 0x4000', 'len = "big"', 1), "integer"),
    (MANIFEST.replace('len = 0x4000', 'len = true', 1), "integer"),
    (MANIFEST.replace('name = "PRG7"', 'name = "PRG0"'), "duplicated"),
    (MANIFEST.replace('start = 0xC000', 'start = 0x8000'), "fixed bank"),
    (MANIFEST.replace('len = 0x4000', 'len = 0x3000', 1), "power of two"),
    (MANIFEST.replace('file = "prg.bin"\nfile_offset = 0\n', ''), "missing 'file'"),
    (MANIFEST.split("[[banks]]")[0], "no banks"),
    ("memory = [ { start = 0xFFFF, len = 2 } ]\n" + MANIFEST.split("]\n", 1)[1],
     "overflows"),
    ("memory = [", "invalid TOML"),
])
def test_invalid_manifests(text, message) -> None:
    with pytest.raises(ConfigError, match=message):
        parse_manifest(text)
