"""
Claude Meter
============

Tray monitor for Claude usage limits: adaptive polling of the OAuth usage
endpoint, threshold alerts and sleep/wake recovery.
"""
__version__ = '1.0.0'
