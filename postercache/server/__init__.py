"""
HTTP front for postercache.
"""
