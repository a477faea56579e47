from __future__ import annotations

from nescdl.report import bank_coverage, build_summary, print_stats

from .helpers import NO_VECTORS, Rom, make_engine


def _analyzed():
    rom = Rom()
    rom.add_bank("PRG7", 0xC000, fixed=True)
    rom.write(0xC000, [0xEA, 0x60])                # nop; rts
    rom.write(0xC010, [0x00])                      # brk
    engine = make_engine(rom, NO_VECTORS)
    result = engine.run(entries=[0xC000, 0xC010])
    return engine, result


def test_bank_coverage_counts_marks() -> None:
    engine, _ = _analyzed()
    [row] = bank_coverage(engine.banks, engine.cdl)
    assert row["name"] == "PRG7"
    assert row["code"] == 2
    assert row["data"] == 0
    assert row["unknown"] == 0x4000 - 2
    assert row["analyzable"]


def test_summary_tallies_rejections() -> None:
    engine, result = _analyzed()
    summary = build_summary([result], bank_coverage(engine.banks, engine.cdl))
    assert summary["total_accepted"] == 2
    assert summary["rejections_by_reason"] == {"brk not allowed": 1}
    assert "data_references" not in summary


def test_print_stats(capsys) -> None:
    engine, result = _analyzed()
    print_stats([result], bank_coverage(engine.banks, engine.cdl))
    out = capsys.readouterr().out
    assert "  CDL Analysis Summary\n" in out
    assert "\n  Rejections by reason:\n" in out
    assert "brk not allowed" in out
    assert "PRG7" in out
