"""
TOML manifest loading.

Layout:

    memory = [
        { start = 0, len = 0x800, readable = true, writable = true, executable = true },
        ...
    ]

    [[banks]]
    name = "PRG7"
    start = 0xC000
    len = 0x4000
    file = "prg.bin"
    file_offset = 0x1C000
    cdl = "prg.cdl"
    cdl_offset = 0x1C000
    fixed = true

    [config.analysis]
    allow_brk = false

Unknown keys are rejected. Relative paths resolve against the directory
holding the manifest.
"""

import dataclasses
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .address_space import AddressSpace, Region
from .banks import Bank, BankSet, validate_banks
from .config import AnalysisConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

_REGION_KEYS = {"start", "len", "readable", "writable", "executable"}
_BANK_KEYS = {"name", "start", "len", "file", "file_offset", "cdl",
              "cdl_offset", "fixed"}
_TOP_KEYS = {"memory", "banks", "config"}
_CONFIG_KEYS = {"analysis"}
_ANALYSIS_KEYS = {f.name for f in dataclasses.fields(AnalysisConfig)}


@dataclass(frozen=True)
class Manifest:
    """Typed, validated contents of a manifest file."""
    regions: Tuple[Region, ...]
    banks: Tuple[Bank, ...]
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    path: Optional[Path] = None

    def address_space(self) -> AddressSpace:
        return AddressSpace.build(self.regions)

    def load_banks(self) -> BankSet:
        return BankSet.load(self.banks)

    def bank_names(self) -> List[str]:
        return [b.name for b in self.banks]


# ============================================================
# Field helpers
# ============================================================

def _check_keys(entry: Mapping[str, Any], allowed: set, where: str) -> None:
    unknown = sorted(set(entry) - allowed)
    if unknown:
        raise ConfigError(f"{where}: unknown key(s): {', '.join(unknown)}")


def _int(entry: Mapping[str, Any], key: str, where: str,
         default: Optional[int] = None) -> int:
    if key not in entry:
        if default is None:
            raise ConfigError(f"{where}: missing '{key}'")
        return default
    value = entry[key]
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{where}: '{key}' must be an integer, got {value!r}")
    return value


def _bool(entry: Mapping[str, Any], key: str, where: str,
          default: bool = False) -> bool:
    value = entry.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{where}: '{key}' must be true or false, got {value!r}")
    return value


def _str(entry: Mapping[str, Any], key: str, where: str) -> str:
    if key not in entry:
        raise ConfigError(f"{where}: missing '{key}'")
    value = entry[key]
    if not isinstance(value, str):
        raise ConfigError(f"{where}: '{key}' must be a string, got {value!r}")
    return value


def _table_list(doc: Mapping[str, Any], key: str) -> List[Dict[str, Any]]:
    items = doc.get(key, [])
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        raise ConfigError(f"'{key}' must be an array of tables")
    return items


# ============================================================
# Sections
# ============================================================

def _parse_region(entry: Mapping[str, Any], index: int) -> Region:
    where = f"memory[{index}]"
    _check_keys(entry, _REGION_KEYS, where)
    return Region(
        start=_int(entry, "start", where),
        size=_int(entry, "len", where),
        readable=_bool(entry, "readable", where),
        writable=_bool(entry, "writable", where),
        executable=_bool(entry, "executable", where),
    )


def _parse_bank(entry: Mapping[str, Any], index: int, base_dir: Path) -> Bank:
    where = f"banks[{index}]"
    _check_keys(entry, _BANK_KEYS, where)
    name = _str(entry, "name", where)
    where = f"bank '{name}'"
    return Bank(
        name=name,
        start=_int(entry, "start", where),
        size=_int(entry, "len", where),
        file=base_dir / _str(entry, "file", where),
        cdl=base_dir / _str(entry, "cdl", where),
        file_offset=_int(entry, "file_offset", where, default=0),
        cdl_offset=_int(entry, "cdl_offset", where, default=0),
        fixed=_bool(entry, "fixed", where),
    )


def _parse_analysis(doc: Mapping[str, Any]) -> AnalysisConfig:
    section = doc.get("config", {})
    if not isinstance(section, dict):
        raise ConfigError("'config' must be a table")
    _check_keys(section, _CONFIG_KEYS, "config")

    analysis = section.get("analysis", {})
    if not isinstance(analysis, dict):
        raise ConfigError("'config.analysis' must be a table")
    _check_keys(analysis, _ANALYSIS_KEYS, "config.analysis")

    defaults = AnalysisConfig()
    values = {
        key: _bool(analysis, key, "config.analysis", getattr(defaults, key))
        for key in _ANALYSIS_KEYS
    }
    return AnalysisConfig(**values)


def parse_manifest(text: str, base_dir: Path = Path("."),
                   path: Optional[Path] = None) -> Manifest:
    """Parse manifest text; raises ConfigError on any violation."""
    try:
        doc = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML: {e}") from e

    _check_keys(doc, _TOP_KEYS, "manifest")

    regions = tuple(_parse_region(entry, i)
                    for i, entry in enumerate(_table_list(doc, "memory")))
    banks = tuple(_parse_bank(entry, i, Path(base_dir))
                  for i, entry in enumerate(_table_list(doc, "banks")))
    if not banks:
        raise ConfigError("manifest declares no banks")

    validate_banks(banks)
    return Manifest(regions, banks, _parse_analysis(doc), path)


def load_manifest(path) -> Manifest:
    """Read and parse a manifest file."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"manifest not found: {path}")
    logger.debug("reading manifest %s", path)
    text = path.read_text(encoding="utf-8")
    return parse_manifest(text, base_dir=path.parent, path=path)
