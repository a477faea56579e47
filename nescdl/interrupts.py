"""
Interrupt vector lookup.

Vectors are read through the BankSet from the top of the address space,
where a fixed bank is expected to be mapped.
"""

import logging
from typing import List, Optional, Tuple

from . import config
from .banks import BankSet, MapperState
from .config import AnalysisConfig

logger = logging.getLogger(__name__)


def read_vector(banks: BankSet, state: MapperState, vector: int) -> Optional[int]:
    """Handler address stored at `vector`, or None if it can't be read."""
    hit = banks.resolve(vector, state)
    if hit is None:
        logger.warning("vector $%04X is not mapped to any bank", vector)
        return None
    bank, _ = hit
    if not bank.fixed:
        logger.warning("vector $%04X lies in switchable bank '%s'",
                       vector, bank.name)
    addr = banks.read_word(vector, state)
    if addr is None:
        logger.warning("vector $%04X is unreadable (bank '%s')",
                       vector, bank.name)
    return addr


def enabled_vectors(cfg: AnalysisConfig) -> List[Tuple[str, int]]:
    enabled = {
        "NMI": cfg.use_nmi,
        "RESET": cfg.use_reset,
        "IRQ": cfg.use_irq,
    }
    return [(name, vec) for name, vec in config.INTERRUPT_VECTORS
            if enabled[name]]


def entry_points(banks: BankSet, state: MapperState,
                 cfg: AnalysisConfig) -> List[Tuple[str, int, int]]:
    """
    Seed addresses for one traversal.

    Returns (name, vector_address, handler_address) for every enabled
    vector whose handler could be read, in NMI, RESET, IRQ order.
    """
    seeds = []
    for name, vector in enabled_vectors(cfg):
        handler = read_vector(banks, state, vector)
        if handler is None:
            continue
        logger.debug("%s vector $%04X -> $%04X", name, vector, handler)
        seeds.append((name, vector, handler))
    return seeds
