"""HTTP broker around an external transaction/block analysis engine."""

__version__ = "0.1.0"
