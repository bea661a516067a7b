"""Log decoding service with policy-controlled failure diagnostics."""

__version__ = "0.1.0"
