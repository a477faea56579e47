"""
Configuration constants for the NES code/data analyzer.

Defines the address space layout, interrupt vector locations, CDL bit
assignments and the analysis settings consumed by the traversal engine.
"""

from dataclasses import dataclass

# ============================================================
# CPU Address Space
# ============================================================

ADDRESS_SPACE_SIZE = 0x10000
ADDRESS_MASK = 0xFFFF

# Zero page (indexed zp modes may touch any of it)
ZERO_PAGE_SIZE = 0x100

# Longest 6502 instruction encoding
MAX_INSTRUCTION_LENGTH = 3

# ============================================================
# Interrupt Vectors
# ============================================================

NMI_VECTOR = 0xFFFA
RESET_VECTOR = 0xFFFC
IRQ_VECTOR = 0xFFFE

# Seeding order (name, vector address)
INTERRUPT_VECTORS = [
    ("NMI", NMI_VECTOR),
    ("RESET", RESET_VECTOR),
    ("IRQ", IRQ_VECTOR),
]

# ============================================================
# CDL Layout
# ============================================================

CDL_CODE = 0x01
CDL_DATA = 0x02

# ============================================================
# Permission Flags (packed per address)
# ============================================================

PERM_READ = 0x01
PERM_WRITE = 0x02
PERM_EXEC = 0x04

# ============================================================
# Tool Settings
# ============================================================

DEFAULT_MANIFEST = "disnes.toml"
SUMMARY_FILENAME = "summary.json"


@dataclass(frozen=True)
class AnalysisConfig:
    """Settings for one analysis run. Immutable while a traversal runs."""

    # Which interrupt vectors seed the traversal
    use_nmi: bool = True
    use_reset: bool = True
    use_irq: bool = True

    # Documented opcodes that most games never execute
    allow_brk: bool = False
    allow_clv: bool = False
    allow_sed: bool = False

    # Undocumented opcodes
    allow_unofficial: bool = False

    # Operand address must be readable/writable; indirect pointers must
    # not straddle a page
    check_operand_access: bool = True

    # Sequential and branch successors must stay inside the bank
    check_fallthrough: bool = True

    # Mark bytes read by absolute/zero-page operands as data
    mark_data_refs: bool = False

    def to_dict(self) -> dict:
        return {
            "use_nmi": self.use_nmi,
            "use_reset": self.use_reset,
            "use_irq": self.use_irq,
            "allow_brk": self.allow_brk,
            "allow_clv": self.allow_clv,
            "allow_sed": self.allow_sed,
            "allow_unofficial": self.allow_unofficial,
            "check_operand_access": self.check_operand_access,
            "check_fallthrough": self.check_fallthrough,
            "mark_data_refs": self.mark_data_refs,
        }
