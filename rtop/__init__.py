"""rtop - remote system monitoring over SSH."""

__version__ = "0.3.0"
