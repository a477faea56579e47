"""
Control-flow traversal engine.

Seeds a work queue from the interrupt vectors and from any Code bytes of
a loaded CDL, then repeatedly resolves, decodes, checks and marks
instructions, following their control transfers until the queue is
exhausted. The result is a fixed point over reachable code, so the final
CDL does not depend on queue order or worker count.
"""

import logging
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from . import config
from . import opcodes
from .address_space import AddressSpace
from .banks import Bank, BankSet, MapperState
from .cdl import CdlKind, CdlStore
from .config import AnalysisConfig
from .decoder import FlowKind, Instruction, decode, format_instruction
from .errors import DecodeError
from .interrupts import entry_points, read_vector
from .opcodes import AddressingMode

logger = logging.getLogger(__name__)


class QueueOrder(Enum):
    FIFO = "fifo"
    LIFO = "lifo"


@dataclass(frozen=True)
class PolicyRejection:
    """A decoded instruction the legality policy refused to trust."""
    address: int
    instruction: Instruction
    reason: str

    @property
    def text(self) -> str:
        return format_instruction(self.instruction)

    def to_dict(self) -> dict:
        return {
            "address": f"0x{self.address:04X}",
            "instruction": self.text,
            "reason": self.reason,
        }


@dataclass
class AnalysisResult:
    """Counters and diagnostics of one traversal."""
    state: MapperState
    seeds: List[int] = field(default_factory=list)
    loaded_seeds: int = 0
    steps: int = 0
    decoded: int = 0
    accepted: int = 0
    skipped: int = 0
    discarded: int = 0
    decode_errors: int = 0
    rejections: List[PolicyRejection] = field(default_factory=list)
    limit_reached: bool = False
    elapsed: float = 0.0

    def to_dict(self) -> dict:
        return {
            "snapshot": self.state.describe(),
            "version": self.state.version,
            "seeds": [f"0x{a:04X}" for a in self.seeds],
            "loaded_seeds": self.loaded_seeds,
            "steps": self.steps,
            "decoded": self.decoded,
            "accepted": self.accepted,
            "skipped": self.skipped,
            "discarded": self.discarded,
            "decode_errors": self.decode_errors,
            "rejected": len(self.rejections),
            "limit_reached": self.limit_reached,
            "elapsed": round(self.elapsed, 3),
        }


# ============================================================
# Operand access candidates
# ============================================================

def _zero_page() -> range:
    return range(config.ZERO_PAGE_SIZE)


def _page_run(base: int) -> List[int]:
    return [(base + i) & config.ADDRESS_MASK for i in range(0x100)]


def read_candidates(insn: Instruction) -> Optional[List[int]]:
    """
    Every address `insn` may read, or None if it reads nothing.

    Pointer fetches of indirect modes count as reads even for stores;
    opcode and operand fetches do not.
    """
    mode = insn.mode
    operand = insn.operand

    if mode == AddressingMode.IND:
        return [operand, (operand + 1) & config.ADDRESS_MASK]
    if mode == AddressingMode.INDX:
        return list(_zero_page())
    if mode == AddressingMode.INDY:
        return [operand, (operand + 1) & 0xFF]
    if not insn.reads_operand:
        return None
    if mode in (AddressingMode.ZP, AddressingMode.ABS):
        return [operand]
    if mode in (AddressingMode.ZPX, AddressingMode.ZPY):
        return list(_zero_page())
    if mode in (AddressingMode.ABSX, AddressingMode.ABSY):
        return _page_run(operand)
    return None


def write_candidates(insn: Instruction) -> Optional[List[int]]:
    """Every address `insn` may write, or None if it writes nothing."""
    if not insn.writes_operand or insn.mode.is_indirect:
        return None
    mode = insn.mode
    if mode in (AddressingMode.ZP, AddressingMode.ABS):
        return [insn.operand]
    if mode in (AddressingMode.ZPX, AddressingMode.ZPY):
        return list(_zero_page())
    if mode in (AddressingMode.ABSX, AddressingMode.ABSY):
        return _page_run(insn.operand)
    return None


def is_wrapping_pointer(insn: Instruction) -> bool:
    """True if the indirect pointer's high byte would be fetched from the same page."""
    if insn.mode == AddressingMode.IND:
        return (insn.operand & 0xFF) == 0xFF
    if insn.mode in (AddressingMode.INDX, AddressingMode.INDY):
        return insn.operand == 0xFF
    return False


def _unversioned(state: MapperState) -> MapperState:
    return replace(state, version=0) if state.version else state


class AnalysisEngine:
    """
    Reachability traversal over one BankSet.

    AddressSpace and BankSet are read-only; the only shared mutable state
    is the CdlStore, whose claim() serializes concurrent workers.

    Usage:
        engine = AnalysisEngine(space, banks, cdl, AnalysisConfig())
        result = engine.run(MapperState.single(bank))
        cdl.flush()
    """

    def __init__(self, space: AddressSpace, banks: BankSet, cdl: CdlStore,
                 cfg: Optional[AnalysisConfig] = None,
                 order: QueueOrder = QueueOrder.FIFO):
        self.space = space
        self.banks = banks
        self.cdl = cdl
        self.config = cfg or AnalysisConfig()
        self.order = order

        # (snapshot with version 0, address) -> accepted instruction
        self.instructions: Dict[Tuple[MapperState, int], Instruction] = {}

        # Seeds of the current run taken from loaded Code bytes
        self._trusted: FrozenSet[int] = frozenset()
        self._lock = threading.Lock()

    # ------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------

    def _mark_vector(self, vector: int, state: MapperState) -> None:
        for addr in (vector, vector + 1):
            hit = self.banks.resolve(addr, state)
            if hit is None or not self.banks.is_analyzable(hit[0]):
                continue
            file_id, offset = self.banks.cdl_address(*hit)
            self.cdl.mark(file_id, offset, CdlKind.DATA)

    def seed(self, state: MapperState, entries: Iterable[int] = ()) -> List[int]:
        """Interrupt handlers (vector bytes marked Data) followed by `entries`."""
        seeds = []
        for name, vector, handler in entry_points(self.banks, state, self.config):
            self._mark_vector(vector, state)
            if not self.space.is_executable(handler):
                logger.warning("%s handler $%04X is not executable",
                               name, handler)
            seeds.append(handler)
        seeds.extend(addr & config.ADDRESS_MASK for addr in entries)
        return seeds

    def cdl_seeds(self, state: MapperState) -> List[int]:
        """
        Instruction starts recorded by the CDL as loaded from disk.

        Code bytes cover whole encodings, so each run of loaded Code bytes
        in a mapped bank is swept from its first byte, one instruction
        length at a time, to recover the opcode addresses.
        """
        starts = []
        for bank in self.banks.active_banks(state):
            if not self.banks.is_analyzable(bank):
                continue
            runs = self.cdl.loaded_runs(bank.cdl, CdlKind.CODE,
                                        bank.cdl_offset, bank.size)
            for offset, length in runs:
                local = offset - bank.cdl_offset
                end = local + length
                while local < end:
                    starts.append(bank.start + local)
                    opcode = self.banks.read_byte(bank, local)
                    local += opcodes.instruction_length(opcode)
        return starts

    # ------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------

    def run(self, state: Optional[MapperState] = None,
            entries: Iterable[int] = (), workers: int = 1,
            max_steps: Optional[int] = None) -> AnalysisResult:
        """
        Traverse everything reachable from the seeds under one snapshot.

        Returns the run's counters; the marks themselves live in the
        CdlStore and are written by its flush().
        """
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")

        t_start = time.time()
        state = state if state is not None else MapperState()
        result = AnalysisResult(state=state)

        self.cdl.reset_claims()
        result.seeds = self.seed(state, entries)
        loaded = self.cdl_seeds(state)
        result.loaded_seeds = len(loaded)
        self._trusted = frozenset(loaded)
        pending = result.seeds + loaded

        try:
            if workers == 1:
                self._run_serial(state, result, pending, max_steps)
            else:
                self._run_threaded(state, result, pending, workers, max_steps)
        finally:
            self._trusted = frozenset()

        result.elapsed = time.time() - t_start
        logger.info("%s: %d steps, %d instructions accepted, %d rejected",
                    state.describe(), result.steps, result.accepted,
                    len(result.rejections))
        return result

    def analyze_all(self, states: Optional[Sequence[MapperState]] = None,
                    entries: Iterable[int] = (), workers: int = 1,
                    max_steps: Optional[int] = None) -> List[AnalysisResult]:
        """One traversal per snapshot; every switchable bank by default."""
        if states is None:
            states = self.banks.snapshots()
        entries = list(entries)
        return [self.run(s, entries, workers, max_steps) for s in states]

    def _take_step(self, result: AnalysisResult,
                   max_steps: Optional[int]) -> bool:
        with self._lock:
            if max_steps is not None and result.steps >= max_steps:
                result.limit_reached = True
                return False
            result.steps += 1
            return True

    def _run_serial(self, state: MapperState, result: AnalysisResult,
                    pending: List[int], max_steps: Optional[int]) -> None:
        worklist = deque(pending)
        pop = worklist.popleft if self.order == QueueOrder.FIFO else worklist.pop

        while worklist:
            if not self._take_step(result, max_steps):
                logger.warning("step limit %d reached with %d addresses pending",
                               max_steps, len(worklist))
                break
            worklist.extend(self._visit(pop(), state, result))

    def _run_threaded(self, state: MapperState, result: AnalysisResult,
                      pending: List[int], workers: int,
                      max_steps: Optional[int]) -> None:
        if self.order == QueueOrder.FIFO:
            work: queue.Queue = queue.Queue()
        else:
            work = queue.LifoQueue()
        for addr in pending:
            work.put(addr)

        stop = threading.Event()
        failures: List[BaseException] = []

        def worker():
            while True:
                addr = work.get()
                try:
                    if addr is None:
                        return
                    if stop.is_set() or not self._take_step(result, max_steps):
                        continue
                    for succ in self._visit(addr, state, result):
                        work.put(succ)
                except Exception as e:
                    with self._lock:
                        failures.append(e)
                    stop.set()
                finally:
                    work.task_done()

        threads = [threading.Thread(target=worker, name=f"nescdl-worker-{i}",
                                    daemon=True)
                   for i in range(workers)]
        for t in threads:
            t.start()

        work.join()
        for _ in threads:
            work.put(None)
        for t in threads:
            t.join()

        if failures:
            raise failures[0]
        if result.limit_reached:
            logger.warning("step limit %d reached", max_steps)

    def _count(self, result: AnalysisResult, name: str) -> None:
        with self._lock:
            setattr(result, name, getattr(result, name) + 1)

    def _visit(self, addr: int, state: MapperState,
               result: AnalysisResult) -> List[int]:
        """Process one pending address; returns its successors."""
        hit = self.banks.resolve(addr, state)
        if hit is None:
            self._count(result, "discarded")
            return []
        bank, local = hit
        if not self.banks.is_analyzable(bank) or not self.space.is_executable(addr):
            self._count(result, "discarded")
            return []

        file_id, offset = self.banks.cdl_address(bank, local)
        loaded = self.cdl.loaded(file_id, offset)
        if loaded & CdlKind.DATA and not loaded & CdlKind.CODE:
            # Known data from a loaded CDL is never code
            self._count(result, "discarded")
            return []

        # Every address is visited at most once per run, whatever the outcome
        if not self.cdl.claim(file_id, offset):
            self._count(result, "skipped")
            return []

        data = self.banks.read(bank, local, config.MAX_INSTRUCTION_LENGTH)
        try:
            insn = decode(data, addr, self.space)
        except DecodeError as e:
            logger.debug("decode failed: %s", e)
            self._count(result, "decode_errors")
            return []
        self._count(result, "decoded")

        # Instruction starts recovered from loaded Code bytes are trusted
        if addr in self._trusted:
            reason = None
        else:
            reason = self.check_policy(insn, bank, state)
        if reason is not None:
            rejection = PolicyRejection(addr, insn, reason)
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("rejected %s: %s", rejection.text, reason)
            with self._lock:
                result.rejections.append(rejection)
            return []

        self.cdl.mark_range(file_id, offset, insn.length, CdlKind.CODE)
        with self._lock:
            self.instructions[(_unversioned(state), addr)] = insn
            result.accepted += 1
        return self.successors(insn, state)

    # ------------------------------------------------------------
    # Legality policy
    # ------------------------------------------------------------

    def check_policy(self, insn: Instruction, bank: Bank,
                     state: MapperState) -> Optional[str]:
        """Reason to distrust `insn`, or None if it is accepted."""
        cfg = self.config

        if insn.opcode == opcodes.BRK and not cfg.allow_brk:
            return "brk not allowed"
        if insn.opcode == opcodes.CLV and not cfg.allow_clv:
            return "clv not allowed"
        if insn.opcode == opcodes.SED and not cfg.allow_sed:
            return "sed not allowed"
        if insn.illegal and not cfg.allow_unofficial:
            return "undocumented opcode"

        if cfg.check_operand_access:
            if is_wrapping_pointer(insn):
                return "indirect pointer wraps within its page"
            reads = read_candidates(insn)
            if reads is not None and not self.space.any_readable(reads):
                return "reads only unreadable addresses"
            writes = write_candidates(insn)
            if writes is not None and not self.space.any_writable(writes):
                return "writes only unwritable addresses"

        if cfg.check_fallthrough and not self._stays_in_bank(insn, bank, state):
            return "successor leaves the bank"

        return None

    def _stays_in_bank(self, insn: Instruction, bank: Bank,
                       state: MapperState) -> bool:
        ct = insn.control_transfer
        if ct is None:
            succ = insn.end_address
        elif ct.kind == FlowKind.BRANCH:
            # Only the taken side; the branch may be unconditional in practice
            succ = insn.end_address + insn.branch_offset
        else:
            return True

        if not 0 <= succ < config.ADDRESS_SPACE_SIZE:
            return False
        hit = self.banks.resolve(succ, state)
        return hit is not None and hit[0].name == bank.name

    # ------------------------------------------------------------
    # Successors
    # ------------------------------------------------------------

    def successors(self, insn: Instruction, state: MapperState) -> List[int]:
        ct = insn.control_transfer
        if ct is None:
            if insn.end_address >= config.ADDRESS_SPACE_SIZE:
                return []
            return [insn.end_address]

        if ct.kind in (FlowKind.BRANCH, FlowKind.CALL):
            return [ct.target, ct.return_address]
        if ct.kind == FlowKind.JUMP:
            if ct.target is not None:
                return [ct.target]
            target = self._indirect_target(insn, state)
            return [target] if target is not None else []
        if ct.kind == FlowKind.SOFTWARE_INTERRUPT:
            handler = read_vector(self.banks, state, config.IRQ_VECTOR)
            return [handler] if handler is not None else []
        return []

    def _indirect_target(self, insn: Instruction,
                         state: MapperState) -> Optional[int]:
        if is_wrapping_pointer(insn):
            return None
        return self.banks.read_word(insn.pointer, state)

    # ------------------------------------------------------------
    # Data references
    # ------------------------------------------------------------

    def mark_data_references(self) -> int:
        """
        Mark bytes read through non-indexed operands as Data.

        Covers zero-page and absolute reads and the pointers of JMP (ind)
        of every accepted instruction, where they land in a loaded bank.
        Returns the number of referenced bytes found in banks.
        """
        with self._lock:
            accepted = list(self.instructions.items())

        marked = 0
        for (state, _), insn in accepted:
            targets: List[int] = []
            if insn.effective_address is not None and insn.reads_operand:
                targets.append(insn.effective_address)
            elif insn.opcode == opcodes.JMP_IND and not is_wrapping_pointer(insn):
                targets.extend([insn.pointer, insn.pointer + 1])

            for target in targets:
                hit = self.banks.resolve(target, state)
                if hit is None or not self.banks.is_analyzable(hit[0]):
                    continue
                file_id, offset = self.banks.cdl_address(*hit)
                self.cdl.mark(file_id, offset, CdlKind.DATA)
                marked += 1

        logger.debug("marked %d data reference bytes", marked)
        return marked
