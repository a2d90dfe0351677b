"""debrepo - builds signed APT repositories from heterogeneous package sources."""

__version__ = "0.1.0"
