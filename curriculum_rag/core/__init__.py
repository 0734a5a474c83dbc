"""
Logging and other process-wide setup.
"""
