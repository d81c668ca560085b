"""
Domain Module
"""
