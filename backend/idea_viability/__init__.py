"""Idea viability research pipeline: multi-source research, fusion and scoring."""

__version__ = "0.1.0"
