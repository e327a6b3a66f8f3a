"""StreamRelay: in-process SSE fan-out and resilient stream consumption."""

__version__ = "0.1.0"
