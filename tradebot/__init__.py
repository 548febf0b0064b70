"""Strategy execution engine for grid, DCA, martingale and portfolio bots."""

__version__ = "1.0.0"
