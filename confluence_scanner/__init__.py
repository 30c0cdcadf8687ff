"""Composite scanner — feature snapshots in, validated trade-setup signals out."""

__version__ = "1.0.0"
