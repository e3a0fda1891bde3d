"""
Stream lifecycle package: creation, pause/resume, cancellation and on-chain
reconciliation of salary streams.
"""

from .controller import StreamController, validate_terms

__all__ = ["StreamController", "validate_terms"]
