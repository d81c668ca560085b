"""
Infrastructure Module
"""
