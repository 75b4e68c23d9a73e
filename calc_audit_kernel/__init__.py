"""
Calculation Audit Kernel

Append-only persistence for tax calculation results with:
- Versioned, immutable calculation records
- Ordered, reconstructable breakdown steps
- Reviewed amendments that never mutate the original record
- Tamper evidence via result hashes
"""

__version__ = "0.1.0"
