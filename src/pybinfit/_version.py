from __future__ import annotations

version = "0.1.0"

__all__ = ("version",)
