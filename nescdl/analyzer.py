"""
Main analysis orchestrator.

Loads the manifest, builds the address space and bank set, runs the
traversal for every requested snapshot and writes the CDL files back.
"""

import dataclasses
import logging
import time
from pathlib import Path
from typing import List, Optional, Sequence

from . import config
from .address_space import AddressSpace
from .banks import BankSet, MapperState
from .cdl import CdlStore
from .engine import AnalysisEngine, AnalysisResult, QueueOrder
from .errors import ConfigError
from .manifest import Manifest, load_manifest
from .report import bank_coverage, build_summary, print_stats, write_summary

logger = logging.getLogger(__name__)


class Analyzer:
    """
    Top-level analysis pipeline.

    Usage:
        a = Analyzer("disnes.toml")
        a.run()
    """

    def __init__(self, manifest_path: str = config.DEFAULT_MANIFEST,
                 bank_names: Optional[Sequence[str]] = None,
                 order: QueueOrder = QueueOrder.FIFO,
                 workers: int = 1,
                 max_steps: Optional[int] = None,
                 entries: Sequence[int] = (),
                 data_refs: Optional[bool] = None,
                 dry_run: bool = False,
                 output_dir: Optional[str] = None,
                 verbose: bool = False):
        self.manifest_path = Path(manifest_path)
        self.bank_names = list(bank_names or [])
        self.order = order
        self.workers = workers
        self.max_steps = max_steps
        self.entries = list(entries)
        self.data_refs = data_refs
        self.dry_run = dry_run
        self.output_dir = Path(output_dir) if output_dir else None
        self.verbose = verbose

        # Components (initialized during run)
        self.manifest: Optional[Manifest] = None
        self.space: Optional[AddressSpace] = None
        self.banks: Optional[BankSet] = None
        self.cdl: Optional[CdlStore] = None
        self.engine: Optional[AnalysisEngine] = None
        self.results: List[AnalysisResult] = []
        self.summary: Optional[dict] = None

    def _snapshots(self) -> List[MapperState]:
        if not self.bank_names:
            return self.banks.snapshots()

        states = []
        for name in self.bank_names:
            bank = self.banks.get(name)
            if bank is None:
                raise ConfigError(f"target bank '{name}' not found")
            states.append(MapperState() if bank.fixed else MapperState.single(bank))
        return states

    def run(self) -> bool:
        """
        Execute the full analysis pipeline.

        Returns True on success.
        """
        t_start = time.time()

        # Phase 1: Manifest
        if self.verbose:
            print("Phase 1: Loading manifest...")
        self.manifest = load_manifest(self.manifest_path)
        analysis = self.manifest.analysis
        if self.data_refs is not None and self.data_refs != analysis.mark_data_refs:
            # CLI flag overrides the manifest
            analysis = dataclasses.replace(analysis, mark_data_refs=self.data_refs)
        if self.verbose:
            print(f"  Manifest: {self.manifest_path}")
            print(f"  Regions: {len(self.manifest.regions)}  "
                  f"Banks: {len(self.manifest.banks)}")

        # Phase 2: Address space and banks
        if self.verbose:
            print("\nPhase 2: Building address space and loading banks...")
        self.space = self.manifest.address_space()
        self.banks = self.manifest.load_banks()
        states = self._snapshots()
        if self.verbose:
            loaded = sum(1 for b in self.banks if self.banks.is_analyzable(b))
            print(f"  Executable bytes: {self.space.executable_count():,d}")
            print(f"  Banks loaded: {loaded}/{len(self.banks)}")

        # Phase 3: CDL
        if self.verbose:
            print("\nPhase 3: Loading CDL files...")
        self.cdl = CdlStore.for_banks(self.banks)
        self.cdl.load()
        if self.verbose:
            for path in self.cdl.files:
                print(f"  {path} ({self.cdl.size(path):,d} bytes)")

        # Phase 4: Traversal
        if self.verbose:
            print(f"\nPhase 4: Traversing {len(states)} snapshot(s) "
                  f"({self.order.value}, {self.workers} worker(s))...")
        self.engine = AnalysisEngine(self.space, self.banks, self.cdl,
                                     analysis, order=self.order)
        for state in states:
            result = self.engine.run(state, self.entries, self.workers,
                                     self.max_steps)
            self.results.append(result)
            if self.verbose:
                print(f"  {state.describe()}: {result.accepted:,d} instructions "
                      f"({result.steps:,d} steps, "
                      f"{len(result.rejections):,d} rejected)")

        # Phase 5: Data references
        data_ref_count = None
        if analysis.mark_data_refs:
            if self.verbose:
                print("\nPhase 5: Marking data references...")
            data_ref_count = self.engine.mark_data_references()
            if self.verbose:
                print(f"  Data references: {data_ref_count:,d}")

        # Phase 6: Output
        written: List[Path] = []
        if self.dry_run:
            if self.verbose:
                print("\nPhase 6: Dry run, CDL files left untouched")
        else:
            if self.verbose:
                print("\nPhase 6: Writing CDL files...")
            written = self.cdl.flush()
            if self.verbose:
                for path in written:
                    print(f"  Wrote {path}")

        elapsed = time.time() - t_start
        coverage = bank_coverage(self.banks, self.cdl)
        self.summary = build_summary(self.results, coverage,
                                     self.manifest_path, written,
                                     data_ref_count, elapsed)
        if self.output_dir:
            path = write_summary(self.output_dir / config.SUMMARY_FILENAME,
                                 self.summary)
            logger.info("summary written to %s", path)

        if self.verbose:
            print_stats(self.results, coverage)
            print(f"\n  Elapsed: {elapsed:.2f}s")

        print(f"Done in {elapsed:.2f}s")
        return True
