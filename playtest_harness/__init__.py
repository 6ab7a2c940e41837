"""Automated playtesting harness for multi-agent interactive fiction."""

__version__ = "0.1.0"
