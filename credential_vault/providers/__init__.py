"""Provider validity checks.

The dispatcher gives callers one ``{valid, error}`` contract regardless of
how each provider reports failures.
"""

from .dispatcher import ValidityDispatcher, ValidityResult, ProbeError
from .probes import MonobankProbe, AlphaVantageProbe, BinanceProbe, default_dispatcher

__all__ = [
    "ValidityDispatcher",
    "ValidityResult",
    "ProbeError",
    "MonobankProbe",
    "AlphaVantageProbe",
    "BinanceProbe",
    "default_dispatcher",
]
