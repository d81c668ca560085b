"""
Core Module

Settings and logging shared by the cache layer.
"""
