"""One-way document mirror: source content system -> destination workspace."""

__version__ = "0.3.0"
