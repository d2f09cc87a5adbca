"""
postercache - tiered cache and admission gate in front of a browser session.
"""

__version__ = "0.1.0"
