"""
External service providers.
"""
