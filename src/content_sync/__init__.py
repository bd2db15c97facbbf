"""Three-way content reconciliation between a local store and a remote system."""

__version__ = "0.1.0"
