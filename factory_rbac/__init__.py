"""Factory access-control core: dynamic roles, permission matrix and data reach."""

__version__ = "0.1.0"
