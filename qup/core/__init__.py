"""
Core Logic.

This package contains the platform table, the instructions-file parser and the
session that sequences downloading, diffing, installing and launching a product.
"""
