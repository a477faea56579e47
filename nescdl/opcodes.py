"""
6502 opcode tables.

One entry per opcode byte, undocumented opcodes included, using the common
NES naming (slo, rla, sre, rra, sax, lax, dcp, isc, kil, ...).
"""

from enum import Enum
from typing import FrozenSet, List


class AddressingMode(Enum):
    IMP = "imp"
    ACC = "acc"
    IMM = "imm"
    ZP = "zp"
    ZPX = "zpx"
    ZPY = "zpy"
    ABS = "abs"
    ABSX = "absx"
    ABSY = "absy"
    IND = "ind"
    INDX = "indx"
    INDY = "indy"
    REL = "rel"

    @property
    def operand_length(self) -> int:
        return _OPERAND_LENGTHS[self]

    @property
    def is_indirect(self) -> bool:
        return self in (AddressingMode.IND, AddressingMode.INDX,
                        AddressingMode.INDY)

    @property
    def is_zero_page(self) -> bool:
        return self in (AddressingMode.ZP, AddressingMode.ZPX,
                        AddressingMode.ZPY)


_OPERAND_LENGTHS = {
    AddressingMode.IMP: 0,
    AddressingMode.ACC: 0,
    AddressingMode.IMM: 1,
    AddressingMode.ZP: 1,
    AddressingMode.ZPX: 1,
    AddressingMode.ZPY: 1,
    AddressingMode.ABS: 2,
    AddressingMode.ABSX: 2,
    AddressingMode.ABSY: 2,
    AddressingMode.IND: 2,
    AddressingMode.INDX: 1,
    AddressingMode.INDY: 1,
    AddressingMode.REL: 1,
}


def _rows(text: str) -> List[str]:
    return text.split()


def _flags(text: str) -> List[bool]:
    return [c == "1" for c in text.split()]


# ============================================================
# Mnemonics
# ============================================================

MNEMONICS = _rows("""
    brk ora kil slo nop ora asl slo php ora asl anc nop ora asl slo
    bpl ora kil slo nop ora asl slo clc ora nop slo nop ora asl slo
    jsr and kil rla bit and rol rla plp and rol anc bit and rol rla
    bmi and kil rla nop and rol rla sec and nop rla nop and rol rla
    rti eor kil sre nop eor lsr sre pha eor lsr alr jmp eor lsr sre
    bvc eor kil sre nop eor lsr sre cli eor nop sre nop eor lsr sre
    rts adc kil rra nop adc ror rra pla adc ror arr jmp adc ror rra
    bvs adc kil rra nop adc ror rra sei adc nop rra nop adc ror rra
    nop sta nop sax sty sta stx sax dey nop txa xaa sty sta stx sax
    bcc sta kil ahx sty sta stx sax tya sta txs tas shy sta shx ahx
    ldy lda ldx lax ldy lda ldx lax tay lda tax lax ldy lda ldx lax
    bcs lda kil lax ldy lda ldx lax clv lda tsx las ldy lda ldx lax
    cpy cmp nop dcp cpy cmp dec dcp iny cmp dex axs cpy cmp dec dcp
    bne cmp kil dcp nop cmp dec dcp cld cmp nop dcp nop cmp dec dcp
    cpx sbc nop isc cpx sbc inc isc inx sbc nop sbc cpx sbc inc isc
    beq sbc kil isc nop sbc inc isc sed sbc nop isc nop sbc inc isc
""")

# ============================================================
# Addressing Modes
# ============================================================

MODES = [AddressingMode(m) for m in _rows("""
    imp indx imp indx zp  zp  zp  zp  imp imm  acc imm  abs  abs  abs  abs
    rel indy imp indy zpx zpx zpx zpx imp absy imp absy absx absx absx absx
    abs indx imp indx zp  zp  zp  zp  imp imm  acc imm  abs  abs  abs  abs
    rel indy imp indy zpx zpx zpx zpx imp absy imp absy absx absx absx absx
    imp indx imp indx zp  zp  zp  zp  imp imm  acc imm  abs  abs  abs  abs
    rel indy imp indy zpx zpx zpx zpx imp absy imp absy absx absx absx absx
    imp indx imp indx zp  zp  zp  zp  imp imm  acc imm  ind  abs  abs  abs
    rel indy imp indy zpx zpx zpx zpx imp absy imp absy absx absx absx absx
    imm indx imm indx zp  zp  zp  zp  imp imm  imp imm  abs  abs  abs  abs
    rel indy imp indy zpx zpx zpy zpy imp absy imp absy absx absx absy absy
    imm indx imm indx zp  zp  zp  zp  imp imm  imp imm  abs  abs  abs  abs
    rel indy imp indy zpx zpx zpy zpy imp absy imp absy absx absx absy absy
    imm indx imm indx zp  zp  zp  zp  imp imm  imp imm  abs  abs  abs  abs
    rel indy imp indy zpx zpx zpx zpx imp absy imp absy absx absx absx absx
    imm indx imm indx zp  zp  zp  zp  imp imm  imp imm  abs  abs  abs  abs
    rel indy imp indy zpx zpx zpx zpx imp absy imp absy absx absx absx absx
""")]

# ============================================================
# Documented Opcodes
# ============================================================

OFFICIAL = _flags("""
    1 1 0 0 0 1 1 0 1 1 1 0 0 1 1 0
    1 1 0 0 0 1 1 0 1 1 0 0 0 1 1 0
    1 1 0 0 1 1 1 0 1 1 1 0 1 1 1 0
    1 1 0 0 0 1 1 0 1 1 0 0 0 1 1 0
    1 1 0 0 0 1 1 0 1 1 1 0 1 1 1 0
    1 1 0 0 0 1 1 0 1 1 0 0 0 1 1 0
    1 1 0 0 0 1 1 0 1 1 1 0 1 1 1 0
    1 1 0 0 0 1 1 0 1 1 0 0 0 1 1 0
    0 1 0 0 1 1 1 0 1 0 1 0 1 1 1 0
    1 1 0 0 1 1 1 0 1 1 1 0 0 1 0 0
    1 1 1 0 1 1 1 0 1 1 1 0 1 1 1 0
    1 1 0 0 1 1 1 0 1 1 1 0 1 1 1 0
    1 1 0 0 1 1 1 0 1 1 1 0 1 1 1 0
    1 1 0 0 0 1 1 0 1 1 0 0 0 1 1 0
    1 1 0 0 1 1 1 0 1 1 1 0 1 1 1 0
    1 1 0 0 0 1 1 0 1 1 0 0 0 1 1 0
""")

# ============================================================
# Effective-Address Access
# (pointer fetches of indirect modes are not counted)
# ============================================================

READS = _flags("""
    0 1 0 1 1 1 1 1 0 0 0 0 1 1 1 1
    0 1 0 1 1 1 1 1 0 1 0 1 1 1 1 1
    0 1 0 1 1 1 1 1 0 0 0 0 1 1 1 1
    0 1 0 1 1 1 1 1 0 1 0 1 1 1 1 1
    0 1 0 1 1 1 1 1 0 0 0 0 0 1 1 1
    0 1 0 1 1 1 1 1 0 1 0 1 1 1 1 1
    0 1 0 1 1 1 1 1 0 0 0 0 0 1 1 1
    0 1 0 1 1 1 1 1 0 1 0 1 1 1 1 1
    0 0 0 0 0 0 0 0 0 0 0 0 0 0 0 0
    0 0 0 0 0 0 0 0 0 0 0 0 0 0 0 0
    0 1 0 1 1 1 1 1 0 0 0 0 1 1 1 1
    0 1 0 1 1 1 1 1 0 1 0 1 1 1 1 1
    0 1 0 1 1 1 1 1 0 0 0 0 1 1 1 1
    0 1 0 1 1 1 1 1 0 1 0 1 1 1 1 1
    0 1 0 1 1 1 1 1 0 0 0 0 1 1 1 1
    0 1 0 1 1 1 1 1 0 1 0 1 1 1 1 1
""")

WRITES = _flags("""
    0 0 0 1 0 0 1 1 0 0 0 0 0 0 1 1
    0 0 0 1 0 0 1 1 0 0 0 1 0 0 1 1
    0 0 0 1 0 0 1 1 0 0 0 0 0 0 1 1
    0 0 0 1 0 0 1 1 0 0 0 1 0 0 1 1
    0 0 0 1 0 0 1 1 0 0 0 0 0 0 1 1
    0 0 0 1 0 0 1 1 0 0 0 1 0 0 1 1
    0 0 0 1 0 0 1 1 0 0 0 0 0 0 1 1
    0 0 0 1 0 0 1 1 0 0 0 1 0 0 1 1
    0 1 0 1 1 1 1 1 0 0 0 0 1 1 1 1
    0 1 0 1 1 1 1 1 0 1 0 1 1 1 1 1
    0 0 0 0 0 0 0 0 0 0 0 0 0 0 0 0
    0 0 0 0 0 0 0 0 0 0 0 0 0 0 0 0
    0 0 0 1 0 0 1 1 0 0 0 0 0 0 1 1
    0 0 0 1 0 0 1 1 0 0 0 1 0 0 1 1
    0 0 0 1 0 0 1 1 0 0 0 0 0 0 1 1
    0 0 0 1 0 0 1 1 0 0 0 1 0 0 1 1
""")

# ============================================================
# Control Flow
# ============================================================

BRK = 0x00
JSR = 0x20
RTI = 0x40
JMP_ABS = 0x4C
RTS = 0x60
JMP_IND = 0x6C
CLV = 0xB8
SED = 0xF8

BRANCHES: FrozenSet[int] = frozenset(
    [0x10, 0x30, 0x50, 0x70, 0x90, 0xB0, 0xD0, 0xF0])

KIL: FrozenSet[int] = frozenset(
    [0x02, 0x12, 0x22, 0x32, 0x42, 0x52, 0x62, 0x72, 0x92, 0xB2, 0xD2, 0xF2])

FLOW: FrozenSet[int] = (
    frozenset([BRK, JSR, RTI, JMP_ABS, RTS, JMP_IND]) | BRANCHES | KIL)


def instruction_length(opcode: int) -> int:
    return 1 + MODES[opcode].operand_length


def is_branch(opcode: int) -> bool:
    return opcode in BRANCHES


def is_kil(opcode: int) -> bool:
    return opcode in KIL


def is_flow(opcode: int) -> bool:
    return opcode in FLOW
