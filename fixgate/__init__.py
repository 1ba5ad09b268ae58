"""fixgate: regression-validation gate for bug-fix commits."""

__version__ = "0.1.0"
__all__ = ["__version__"]
