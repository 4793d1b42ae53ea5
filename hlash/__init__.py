"""
hlash - keeps a Clash engine on a fresh subscription config and runs it
as an OS service.
"""

__version__ = "1.0.0"
