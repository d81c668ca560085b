"""
Services Module
"""
