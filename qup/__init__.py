"""
qup: fetch, verify and install software products described by a remote
instructions file.
"""

__version__ = "2024.1.0"
