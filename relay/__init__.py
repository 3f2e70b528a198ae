"""
File conversion relay.

This package accepts uploaded files, picks an external command-line converter
for each one from a static rule table, runs it, and keeps the result around
for download until the retention sweep removes it.
"""

__version__ = "0.1.0"
