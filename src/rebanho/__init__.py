"""Herd management tools.

This package keeps a local, optimistically updated copy of a rancher's herd
in step with the backend document store, including the denormalized
dam/offspring links between animals.

Subpackages:
- rebanho.core: Configuration, backend client, authentication, units
- rebanho.data: Records, lineage, management areas, CSV export
- rebanho.sync: Reconciliation and the optimistic store
- rebanho.storage: Animal photo upload
- rebanho.ai: Gemini transcript structuring and report narrative
- rebanho.analysis: Sanitary and reproductive reports
- rebanho.cli: Command-line tools
"""

# Re-export common items for convenience
from rebanho.core import settings
from rebanho.sync import HerdState, HerdStore

__all__ = [
    "settings",
    "HerdState",
    "HerdStore",
]

__version__ = "0.1.0"
