"""Confidential auto-pay records — encrypted-record lifecycle and verification."""

__version__ = "0.1.0"
