"""
Exception hierarchy for the analyzer.

ConfigError is fatal before any traversal starts. BankIOError takes a single
bank out of the analysis. DecodeError and its subclasses only ever abandon
one traversal path.
"""


class AnalysisError(Exception):
    """Base class for all analyzer errors."""


class ConfigError(AnalysisError, ValueError):
    """Malformed region, bank, snapshot or manifest."""


class BankIOError(AnalysisError, OSError):
    """A bank's backing file is missing or too short."""

    def __init__(self, bank_name: str, message: str):
        super().__init__(f"bank '{bank_name}': {message}")
        self.bank_name = bank_name


class BankReadError(AnalysisError, IndexError):
    """Read outside a bank, or from a bank whose contents never loaded."""


class DecodeError(AnalysisError):
    """An instruction could not be decoded at the given address."""

    def __init__(self, address: int, message: str):
        super().__init__(f"${address:04X}: {message}")
        self.address = address


class EmptyInput(DecodeError):
    """No byte available at the decode address."""


class TruncatedInstruction(DecodeError):
    """The encoding runs past the bank window or the address space."""


class NonExecutable(DecodeError):
    """A byte of the encoding lies on a non-executable address."""
