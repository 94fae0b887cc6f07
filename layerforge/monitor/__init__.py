"""Terminal rendering for plans, build results, test reports and cache listings.

Modules
-------
renderer
    ``BuildRenderer`` turns layerforge models into Rich renderables.
"""

from layerforge.monitor.renderer import BuildRenderer, format_duration

__all__ = ["BuildRenderer", "format_duration"]
