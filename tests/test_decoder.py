from __future__ import annotations

import pytest

from nescdl import opcodes
from nescdl.address_space import AddressSpace, Region
from nescdl.decoder import FlowKind, decode, format_instruction
from nescdl.errors import (
    DecodeError, EmptyInput, NonExecutable, TruncatedInstruction,
)
from nescdl.opcodes import AddressingMode


def test_tables_cover_every_opcode() -> None:
    for table in (opcodes.MNEMONICS, opcodes.MODES, opcodes.OFFICIAL,
                  opcodes.READS, opcodes.WRITES):
        assert len(table) == 256
    assert sum(opcodes.OFFICIAL) == 151


def test_every_opcode_decodes_with_enough_bytes() -> None:
    for opcode in range(256):
        insn = decode(bytes([opcode, 0x34, 0x12]), 0x8000)
        assert 1 <= insn.length <= 3
        assert insn.length == 1 + opcodes.MODES[opcode].operand_length
        assert insn.raw == bytes([opcode, 0x34, 0x12])[:insn.length]
        assert insn.illegal == (not opcodes.OFFICIAL[opcode])


def test_immediate_load() -> None:
    insn = decode(bytes([0xA9, 0x05, 0xFF]), 0xC000)
    assert insn.mnemonic == "lda"
    assert insn.mode == AddressingMode.IMM
    assert insn.length == 2
    assert insn.operand == 0x05
    assert insn.control_transfer is None
    assert not insn.illegal
    assert insn.end_address == 0xC002


def test_absolute_operand_is_little_endian() -> None:
    insn = decode(bytes([0xAD, 0x02, 0x20]), 0xC000)
    assert insn.operand == 0x2002
    assert insn.effective_address == 0x2002
    assert insn.reads_operand and not insn.writes_operand


def test_jsr_is_call_with_return_address() -> None:
    ct = decode(bytes([0x20, 0x00, 0xD0]), 0xC010).control_transfer
    assert ct.kind == FlowKind.CALL
    assert ct.target == 0xD000
    assert ct.return_address == 0xC013


@pytest.mark.parametrize("address,raw,target", [
    (0xC000, [0xF0, 0xFE], 0xC000),   # beq *
    (0xC000, [0xD0, 0x10], 0xC012),
    (0x0000, [0x10, 0xFC], 0xFFFE),   # wraps below zero
])
def test_branch_targets(address, raw, target) -> None:
    insn = decode(bytes(raw), address)
    ct = insn.control_transfer
    assert ct.kind == FlowKind.BRANCH
    assert ct.target == target
    assert ct.return_address == address + 2
    assert insn.mode == AddressingMode.REL


def test_indirect_jump_has_no_static_target() -> None:
    insn = decode(bytes([0x6C, 0x10, 0xC0]), 0xC000)
    assert insn.control_transfer.kind == FlowKind.JUMP
    assert insn.control_transfer.target is None
    assert insn.pointer == 0xC010


@pytest.mark.parametrize("opcode,kind", [
    (0x4C, FlowKind.JUMP),
    (0x60, FlowKind.RETURN),
    (0x40, FlowKind.INTERRUPT_RETURN),
    (0x00, FlowKind.SOFTWARE_INTERRUPT),
    (0x02, FlowKind.HALT),
    (0xF2, FlowKind.HALT),
])
def test_flow_kinds(opcode, kind) -> None:
    insn = decode(bytes([opcode, 0x00, 0xC0]), 0xC000)
    assert insn.control_transfer.kind == kind
    assert opcodes.is_flow(opcode)


def test_plain_instructions_have_no_flow() -> None:
    for opcode in (0xEA, 0xA9, 0x8D, 0xB8, 0xF8):
        assert decode(bytes([opcode, 0, 0]), 0x8000).control_transfer is None
        assert not opcodes.is_flow(opcode)


def test_undocumented_opcode_is_flagged() -> None:
    insn = decode(bytes([0x07, 0x10]), 0x8000)
    assert insn.mnemonic == "slo"
    assert insn.illegal


def test_empty_input() -> None:
    with pytest.raises(EmptyInput):
        decode(b"", 0x8000)


def test_truncated_at_bank_end() -> None:
    with pytest.raises(TruncatedInstruction):
        decode(bytes([0xAD, 0x00]), 0xBFFE)


def test_truncated_past_end_of_address_space() -> None:
    with pytest.raises(TruncatedInstruction):
        decode(bytes([0x20, 0x00, 0xC0]), 0xFFFE)
    # A single-byte instruction on the last address is fine
    assert decode(bytes([0xEA]), 0xFFFF).length == 1


def test_non_executable_operand_refused() -> None:
    space = AddressSpace.build([Region(0xC000, 2, executable=True)])
    with pytest.raises(NonExecutable):
        decode(bytes([0xAD, 0x00, 0x20]), 0xC000, space)
    with pytest.raises(NonExecutable):
        decode(bytes([0xEA]), 0xC002, space)
    assert decode(bytes([0xA9, 0x01]), 0xC000, space).length == 2


def test_decode_errors_share_a_base() -> None:
    for exc in (EmptyInput, NonExecutable, TruncatedInstruction):
        assert issubclass(exc, DecodeError)
    err = TruncatedInstruction(0xBFFE, "lda needs 3 bytes")
    assert err.address == 0xBFFE
    assert "$BFFE" in str(err)


def test_to_dict() -> None:
    d = decode(bytes([0x20, 0x00, 0xD0]), 0xC010).to_dict()
    assert d["address"] == "0xC010"
    assert d["flow"] == "call"
    assert d["target"] == "0xD000"
    assert d["bytes"] == "2000d0"


def test_format_instruction() -> None:
    text = format_instruction(decode(bytes([0xA9, 0x01]), 0xC000))
    assert text.startswith("$C000: ")
    assert "lda" in text.lower()

    illegal = format_instruction(decode(bytes([0x07, 0x10]), 0x8000))
    assert illegal == "$8000: slo $10"
