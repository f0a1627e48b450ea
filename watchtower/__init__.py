"""
WATCHTOWER
==========

Breach monitoring sweeps and reconciliation of long-running external
workflow results into investigation findings.
"""

__version__ = "1.0.0"
