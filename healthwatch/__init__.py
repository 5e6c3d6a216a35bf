"""healthwatch — named health probes aggregated behind GET /health."""

__version__ = "0.1.0"
