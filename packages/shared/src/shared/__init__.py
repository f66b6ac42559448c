"""
Shared settings and utilities.
"""
