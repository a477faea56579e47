"""
Code/Data Log storage.

One byte per original ROM byte: bit0 marks code, bit1 marks data, the
remaining bits are kept as read. Buffers live in memory keyed by CDL file
path; only bytes changed during the run are written back on flush().
"""

import logging
import os
import tempfile
import threading
from enum import IntFlag
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from . import config
from .errors import BankReadError
from .loader import read_file_or_empty

logger = logging.getLogger(__name__)


class CdlKind(IntFlag):
    CODE = config.CDL_CODE
    DATA = config.CDL_DATA


class CdlStore:
    """
    In-memory CDL buffers for every CDL file referenced by the banks.

    Thread-safe: marks and instruction-start claims go through one lock,
    which is the only coordination point between analysis workers.
    """

    def __init__(self, sizes: Mapping[Path, int]):
        self._buffers: Dict[Path, bytearray] = {
            Path(path): bytearray(size) for path, size in sizes.items()
        }
        self._dirty: Dict[Path, Set[int]] = {path: set() for path in self._buffers}
        self._claims: Set[Tuple[Path, int]] = set()
        # Contents as of the last load(); marks made afterwards never show here
        self._loaded: Dict[Path, bytes] = {}
        self._lock = threading.Lock()

    @classmethod
    def for_banks(cls, banks: Iterable) -> "CdlStore":
        """Size each CDL file to cover every bank that maps into it."""
        sizes: Dict[Path, int] = {}
        for bank in banks:
            path = Path(bank.cdl)
            sizes[path] = max(sizes.get(path, 0), bank.cdl_offset + bank.size)
        return cls(sizes)

    @property
    def files(self) -> List[Path]:
        return list(self._buffers)

    def size(self, file_id: Path) -> int:
        return len(self._buffer(file_id))

    def _buffer(self, file_id: Path) -> bytearray:
        try:
            return self._buffers[Path(file_id)]
        except KeyError:
            raise BankReadError(f"unknown CDL file: {file_id}") from None

    def _check_range(self, file_id: Path, offset: int, count: int = 1) -> bytearray:
        buf = self._buffer(file_id)
        if offset < 0 or offset + count > len(buf):
            raise BankReadError(
                f"CDL offset {offset:#X} (+{count}) outside '{file_id}' "
                f"(size={len(buf):#X})")
        return buf

    # ------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------

    def load(self) -> None:
        """Populate buffers from existing CDL files; missing files read as zero."""
        with self._lock:
            for path, buf in self._buffers.items():
                data = read_file_or_empty(path)
                n = min(len(data), len(buf))
                buf[:n] = data[:n]
                buf[n:] = bytes(len(buf) - n)
                self._loaded[path] = bytes(buf)
                self._dirty[path].clear()
                if data:
                    logger.debug("loaded %d CDL bytes from %s", n, path)

    def flush(self) -> List[Path]:
        """
        Write dirty bytes back to their CDL files.

        Each file is rebuilt from its current on-disk contents with only the
        dirty bytes replaced, written to a temporary file in the same
        directory and then atomically moved over the target. Returns the
        files that were written.
        """
        written: List[Path] = []
        with self._lock:
            for path, dirty in self._dirty.items():
                if not dirty:
                    continue
                buf = self._buffers[path]
                current = bytearray(read_file_or_empty(path))
                if len(current) < len(buf):
                    current.extend(bytes(len(buf) - len(current)))
                for offset in dirty:
                    current[offset] = buf[offset]
                _atomic_write(path, bytes(current))
                dirty.clear()
                written.append(path)
                logger.debug("flushed %s", path)
        return written

    # ------------------------------------------------------------
    # Marks
    # ------------------------------------------------------------

    def get(self, file_id: Path, offset: int) -> int:
        return self._check_range(file_id, offset)[offset]

    def is_code(self, file_id: Path, offset: int) -> bool:
        return bool(self.get(file_id, offset) & CdlKind.CODE)

    def is_data(self, file_id: Path, offset: int) -> bool:
        return bool(self.get(file_id, offset) & CdlKind.DATA)

    def mark(self, file_id: Path, offset: int, kind: CdlKind) -> None:
        self.mark_range(file_id, offset, 1, kind)

    def mark_range(self, file_id: Path, offset: int, count: int,
                   kind: CdlKind) -> None:
        """OR `kind` into `count` bytes; marking twice changes nothing."""
        path = Path(file_id)
        with self._lock:
            buf = self._check_range(path, offset, count)
            dirty = self._dirty[path]
            for i in range(offset, offset + count):
                value = buf[i] | int(kind)
                if value != buf[i]:
                    buf[i] = value
                    dirty.add(i)

    # ------------------------------------------------------------
    # Loaded contents
    # ------------------------------------------------------------

    def loaded(self, file_id: Path, offset: int) -> int:
        """Byte as read by load(); 0 if the file was never loaded."""
        self._check_range(file_id, offset)
        data = self._loaded.get(Path(file_id))
        return data[offset] if data is not None else 0

    def loaded_runs(self, file_id: Path, kind: CdlKind, start: int,
                    size: int) -> List[Tuple[int, int]]:
        """
        Maximal (offset, length) runs in [start, start+size) whose loaded
        byte carries `kind`.
        """
        self._check_range(file_id, start, size)
        data = self._loaded.get(Path(file_id))
        if data is None:
            return []

        runs: List[Tuple[int, int]] = []
        run_start = None
        for offset in range(start, start + size):
            if data[offset] & kind:
                if run_start is None:
                    run_start = offset
            elif run_start is not None:
                runs.append((run_start, offset - run_start))
                run_start = None
        if run_start is not None:
            runs.append((run_start, start + size - run_start))
        return runs

    @property
    def dirty_count(self) -> int:
        return sum(len(d) for d in self._dirty.values())

    # ------------------------------------------------------------
    # Instruction-start claims (per run, never persisted)
    # ------------------------------------------------------------

    def claim(self, file_id: Path, offset: int) -> bool:
        """Atomically claim an instruction start; False if already claimed."""
        key = (Path(file_id), offset)
        with self._lock:
            if key in self._claims:
                return False
            self._claims.add(key)
            return True

    def is_claimed(self, file_id: Path, offset: int) -> bool:
        return (Path(file_id), offset) in self._claims

    def claimed_count(self) -> int:
        return len(self._claims)

    def reset_claims(self) -> None:
        with self._lock:
            self._claims.clear()

    def snapshot(self) -> Dict[Path, bytes]:
        with self._lock:
            return {path: bytes(buf) for path, buf in self._buffers.items()}

    def count(self, file_id: Path, kind: CdlKind, start: int = 0,
              size: Optional[int] = None) -> int:
        """Number of bytes in [start, start+size) carrying `kind`."""
        buf = self._buffer(file_id)
        end = len(buf) if size is None else start + size
        return sum(1 for b in buf[start:end] if b & kind)


def _atomic_write(path: Path, data: bytes) -> None:
    path = Path(path)
    directory = path.parent if str(path.parent) else Path(".")
    directory.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp",
                               dir=directory)
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise
