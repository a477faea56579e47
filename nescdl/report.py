"""
Coverage reporting.

Produces per-bank CDL coverage, a printed summary and summary.json.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .banks import BankSet
from .cdl import CdlKind, CdlStore
from .engine import AnalysisResult


def bank_coverage(banks: BankSet, cdl: CdlStore) -> List[dict]:
    """CDL statistics for the slice of the CDL file each bank owns."""
    rows = []
    for bank in banks:
        code = cdl.count(bank.cdl, CdlKind.CODE, bank.cdl_offset, bank.size)
        data = cdl.count(bank.cdl, CdlKind.DATA, bank.cdl_offset, bank.size)
        marked = cdl.count(bank.cdl, CdlKind.CODE | CdlKind.DATA,
                           bank.cdl_offset, bank.size)
        rows.append({
            "name": bank.name,
            "start": f"0x{bank.start:04X}",
            "len": bank.size,
            "fixed": bank.fixed,
            "analyzable": banks.is_analyzable(bank),
            "code": code,
            "data": data,
            "unknown": bank.size - marked,
            "code_pct": round(code * 100 / bank.size, 2),
        })
    return rows


def rejection_reasons(results: Sequence[AnalysisResult]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for result in results:
        for rejection in result.rejections:
            counts[rejection.reason] = counts.get(rejection.reason, 0) + 1
    return counts


def build_summary(results: Sequence[AnalysisResult], coverage: List[dict],
                  manifest_path: Optional[Path] = None,
                  written: Sequence[Path] = (),
                  data_refs: Optional[int] = None,
                  elapsed: float = 0.0) -> dict:
    summary = {
        "manifest": str(manifest_path) if manifest_path else None,
        "runs": [r.to_dict() for r in results],
        "total_steps": sum(r.steps for r in results),
        "total_accepted": sum(r.accepted for r in results),
        "total_rejected": sum(len(r.rejections) for r in results),
        "rejections_by_reason": rejection_reasons(results),
        "banks": coverage,
        "cdl_files_written": [str(p) for p in written],
        "elapsed": round(elapsed, 3),
    }
    if data_refs is not None:
        summary["data_references"] = data_refs
    return summary


def write_summary(path: Path, summary: dict) -> Path:
    """Write summary.json, creating its directory if needed."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(summary, f, indent=2)
    return path


def print_stats(results: Sequence[AnalysisResult], coverage: List[dict]) -> None:
    """Print analysis statistics to stdout."""
    print(f"\n{'=' * 60}")
    print("  CDL Analysis Summary")
    print(f"{'=' * 60}")

    print(f"\n  Snapshots:        {len(results):>10,d}")
    print(f"  Steps:            {sum(r.steps for r in results):>10,d}")
    print(f"  Decoded:          {sum(r.decoded for r in results):>10,d}")
    print(f"  Accepted:         {sum(r.accepted for r in results):>10,d}")
    print(f"  Rejected:         {sum(len(r.rejections) for r in results):>10,d}")
    print(f"  Decode errors:    {sum(r.decode_errors for r in results):>10,d}")

    reasons = rejection_reasons(results)
    if reasons:
        print("\n  Rejections by reason:")
        for reason, count in sorted(reasons.items(), key=lambda x: -x[1]):
            print(f"    {reason:<40s} {count:>8,d}")

    print(f"\n  Coverage by bank:")
    for row in coverage:
        flag = "" if row["analyzable"] else "  (not loaded)"
        print(f"    {row['name']:<12s} {row['start']}  "
              f"code {row['code']:>7,d}  data {row['data']:>7,d}  "
              f"({row['code_pct']:5.1f}% code){flag}")

    print(f"\n{'=' * 60}")
