"""Core addressing, fact lattice and solver modules for tensorfacts."""

__all__ = [
    "cache",
    "exceptions",
    "expr",
    "facts",
    "parser",
    "path",
    "proxies",
    "rules",
    "solver",
]
