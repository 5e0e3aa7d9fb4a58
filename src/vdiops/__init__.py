"""
vdiops: administration runbooks for a Windows VDI fleet.
"""

__version__ = "0.1.0"
