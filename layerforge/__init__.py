"""Layerforge: content-addressed incremental builds with cached dependency layers.

v0.1.0:
  - Manifest fingerprints scoped per build lineage
  - Layer cache over a pluggable registry (filesystem, in-memory)
  - DAG planner running independent stages in parallel
  - Test gate with an always-written report side channel
  - Runtime artifact assembly from an explicit copy set
"""

__version__ = "0.1.0"
__description__ = "Content-addressed incremental build cache with gated runtime assembly"

from layerforge.core.fingerprint import fingerprint
from layerforge.core.layer_cache import LayerCacheStore
from layerforge.core.planner import BuildPlanner
from layerforge.models.build import BuildRequest, BuildResult
from layerforge.models.manifest import Manifest
from layerforge.cli.app import app as cli

__all__ = [
    "BuildPlanner",
    "BuildRequest",
    "BuildResult",
    "LayerCacheStore",
    "Manifest",
    "fingerprint",
    "cli",
    "__version__",
]
