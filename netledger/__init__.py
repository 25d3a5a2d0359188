"""
netledger: task-network state machine and content-addressable artifact store

Provides:
- A stage-gated task ledger for policy-setter / planner / executor networks
- A SHA-256 keyed content store with chunked ingestion
- Versioned artifacts with diff, patch, edit and merge operations

Distribution: Available as both Python library and CLI
"""

__version__ = "0.1.0"
__all__ = [
    "__version__",
]
