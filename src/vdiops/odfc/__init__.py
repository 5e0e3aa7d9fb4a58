"""
Outlook Data File Container (ODFC) VHD management.
"""

from vdiops.odfc.manager import MountResult, OdfcManager, OdfcMode, OdfcPaths
