"""
6502 instruction decoder.

decode() is a pure function of the bytes available in the current bank
window and the address they sit at. It determines length, addressing mode
and control transfer from the opcode tables; capstone is only used to
render instruction text for diagnostics.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from capstone import Cs, CsError, CS_ARCH_MOS65XX, CS_MODE_MOS65XX_6502

from . import config
from . import opcodes
from .errors import EmptyInput, NonExecutable, TruncatedInstruction
from .opcodes import AddressingMode


class FlowKind(Enum):
    BRANCH = "branch"
    JUMP = "jump"
    CALL = "call"
    RETURN = "return"
    INTERRUPT_RETURN = "interrupt_return"
    SOFTWARE_INTERRUPT = "software_interrupt"
    HALT = "halt"


@dataclass(frozen=True)
class ControlTransfer:
    """
    How an instruction leaves straight-line execution.

    `target` is the statically known destination (None for JMP (ind));
    `return_address` is the fall-through address of a call or a branch.
    """
    kind: FlowKind
    target: Optional[int] = None
    return_address: Optional[int] = None

    @property
    def terminates(self) -> bool:
        return self.kind in (FlowKind.RETURN, FlowKind.INTERRUPT_RETURN,
                             FlowKind.HALT)


@dataclass(frozen=True)
class Instruction:
    """A decoded instruction."""
    address: int
    opcode: int
    length: int
    mnemonic: str
    mode: AddressingMode
    operand: Optional[int]
    raw: bytes
    illegal: bool = False
    control_transfer: Optional[ControlTransfer] = None

    @property
    def end_address(self) -> int:
        """Address just past the encoding, not wrapped."""
        return self.address + self.length

    @property
    def reads_operand(self) -> bool:
        return opcodes.READS[self.opcode]

    @property
    def writes_operand(self) -> bool:
        return opcodes.WRITES[self.opcode]

    @property
    def branch_offset(self) -> Optional[int]:
        if self.mode != AddressingMode.REL:
            return None
        return self.operand - 0x100 if self.operand & 0x80 else self.operand

    @property
    def pointer(self) -> Optional[int]:
        """Pointer address for indirect modes."""
        if self.mode.is_indirect:
            return self.operand
        return None

    @property
    def effective_address(self) -> Optional[int]:
        """Operand address when it does not depend on registers or memory."""
        if self.mode in (AddressingMode.ZP, AddressingMode.ABS):
            return self.operand
        return None

    def to_dict(self) -> dict:
        d = {
            "address": f"0x{self.address:04X}",
            "opcode": f"0x{self.opcode:02X}",
            "length": self.length,
            "mnemonic": self.mnemonic,
            "mode": self.mode.value,
            "bytes": self.raw.hex(),
            "illegal": self.illegal,
        }
        if self.operand is not None:
            d["operand"] = f"0x{self.operand:04X}"
        ct = self.control_transfer
        if ct is not None:
            d["flow"] = ct.kind.value
            if ct.target is not None:
                d["target"] = f"0x{ct.target:04X}"
            if ct.return_address is not None:
                d["return_address"] = f"0x{ct.return_address:04X}"
        return d


def _control_transfer(opcode: int, address: int, length: int,
                      operand: Optional[int]) -> Optional[ControlTransfer]:
    next_addr = (address + length) & config.ADDRESS_MASK

    if opcodes.is_branch(opcode):
        offset = operand - 0x100 if operand & 0x80 else operand
        target = (address + length + offset) & config.ADDRESS_MASK
        return ControlTransfer(FlowKind.BRANCH, target, next_addr)
    if opcodes.is_kil(opcode):
        return ControlTransfer(FlowKind.HALT)
    if opcode == opcodes.JSR:
        return ControlTransfer(FlowKind.CALL, operand, next_addr)
    if opcode == opcodes.JMP_ABS:
        return ControlTransfer(FlowKind.JUMP, operand)
    if opcode == opcodes.JMP_IND:
        return ControlTransfer(FlowKind.JUMP, None)
    if opcode == opcodes.RTS:
        return ControlTransfer(FlowKind.RETURN)
    if opcode == opcodes.RTI:
        return ControlTransfer(FlowKind.INTERRUPT_RETURN)
    if opcode == opcodes.BRK:
        return ControlTransfer(FlowKind.SOFTWARE_INTERRUPT)
    return None


def decode(data: bytes, address: int, space=None) -> Instruction:
    """
    Decode one instruction from `data`, which starts at `address`.

    `data` must hold only the bytes left in the current bank window, so an
    encoding that runs past the window is reported as truncated. When an
    AddressSpace is given, every byte of the encoding must be executable;
    this is checked before any operand byte is read.

    Raises EmptyInput, NonExecutable or TruncatedInstruction.
    """
    if not data:
        raise EmptyInput(address, "no bytes available")
    if space is not None and not space.is_executable(address):
        raise NonExecutable(address, "opcode byte is not executable")

    opcode = data[0]
    length = opcodes.instruction_length(opcode)

    if address + length > config.ADDRESS_SPACE_SIZE:
        raise TruncatedInstruction(
            address, f"{opcodes.MNEMONICS[opcode]} runs past $FFFF")
    if space is not None and not space.all_executable(address, length):
        raise NonExecutable(
            address, f"operand of {opcodes.MNEMONICS[opcode]} is not executable")
    if len(data) < length:
        raise TruncatedInstruction(
            address, f"{opcodes.MNEMONICS[opcode]} needs {length} bytes, "
                     f"{len(data)} left in bank")

    raw = bytes(data[:length])
    if length == 1:
        operand = None
    elif length == 2:
        operand = raw[1]
    else:
        operand = raw[1] | (raw[2] << 8)

    return Instruction(
        address=address,
        opcode=opcode,
        length=length,
        mnemonic=opcodes.MNEMONICS[opcode],
        mode=opcodes.MODES[opcode],
        operand=operand,
        raw=raw,
        illegal=not opcodes.OFFICIAL[opcode],
        control_transfer=_control_transfer(opcode, address, length, operand),
    )


# ============================================================
# Diagnostic text
# ============================================================

_cs: Optional[Cs] = None
_cs_lock = threading.Lock()


def _capstone() -> Cs:
    global _cs
    if _cs is None:
        _cs = Cs(CS_ARCH_MOS65XX, CS_MODE_MOS65XX_6502)
    return _cs


def _fallback_text(insn: Instruction) -> str:
    if insn.operand is None:
        return insn.mnemonic
    width = 2 if insn.length == 2 else 4
    return f"{insn.mnemonic} ${insn.operand:0{width}X}"


def format_instruction(insn: Instruction) -> str:
    """Render `insn` as text, e.g. "$C000: lda #$01"."""
    text = None
    # capstone does not know the undocumented opcodes
    if not insn.illegal:
        try:
            with _cs_lock:
                for cs_insn in _capstone().disasm(insn.raw, insn.address, 1):
                    text = f"{cs_insn.mnemonic} {cs_insn.op_str}".strip()
        except CsError:
            text = None
    if not text:
        text = _fallback_text(insn)
    return f"${insn.address:04X}: {text}"
