"""
CLI Interface - Command-line tools for MeshRank.

Provides commands for:
- Text, vector and "more like this" search
- Cross-model and hybrid search
- Offline score calibration
"""

from .main import app, main

__all__ = ["app", "main"]
