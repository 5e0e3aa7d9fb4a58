"""
Exceptions raised by the vdiops runbooks.

Library code raises these; the CLI layer catches ``VdiOpsError``, logs it and
exits with a non-zero status.
"""

from typing import Optional


class VdiOpsError(Exception):
    """Base class for all runbook failures."""


class CommandError(VdiOpsError):
    """An external executable failed or timed out."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class DiskpartError(VdiOpsError):
    """diskpart reported an error or its output could not be parsed."""

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


class RegistryError(VdiOpsError):
    pass


class ServiceError(VdiOpsError):
    pass


class WorkplaceJoinError(VdiOpsError):
    pass


class GraphError(VdiOpsError):
    """Non-success response from the directory API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
