"""
Bank image loader.

Reads each bank's bytes from its backing file with bounded range reads.
A bank whose file is missing or too short is reported and left out; the
remaining banks load normally.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, Optional

from .errors import BankIOError

logger = logging.getLogger(__name__)


def read_range(path: Path, offset: int, size: int) -> bytes:
    """Read exactly `size` bytes at `offset`, raising EOFError if short."""
    with open(path, 'rb') as f:
        f.seek(offset)
        data = f.read(size)
    if len(data) != size:
        raise EOFError(
            f"'{path}' has only {len(data):#X} of {size:#X} bytes "
            f"at offset {offset:#X}")
    return data


def load_bank(bank) -> bytes:
    """Load one bank's contents, raising BankIOError on any failure."""
    try:
        return read_range(bank.file, bank.file_offset, bank.size)
    except FileNotFoundError:
        raise BankIOError(bank.name, f"file not found: {bank.file}") from None
    except (OSError, EOFError) as e:
        raise BankIOError(
            bank.name,
            f"can't read {bank.size:#X} bytes at {bank.file_offset:#X}: {e}",
        ) from e


def load_banks(banks: Iterable) -> Dict[str, Optional[bytes]]:
    """
    Load every bank.

    Returns a mapping of bank name to contents; banks that failed to load
    map to None and are logged as warnings.
    """
    contents: Dict[str, Optional[bytes]] = {}
    for bank in banks:
        try:
            contents[bank.name] = load_bank(bank)
        except BankIOError as e:
            logger.warning("%s; window $%04X-$%04X is unanalyzable",
                           e, bank.start, bank.end - 1)
            contents[bank.name] = None
    return contents


def read_file_or_empty(path: Path) -> bytes:
    """Read a whole file; a file that does not exist reads as empty."""
    try:
        return Path(path).read_bytes()
    except FileNotFoundError:
        return b""
