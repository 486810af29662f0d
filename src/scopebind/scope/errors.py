"""
Error types for the scope digest engine.
"""


class ScopeError(Exception):
    """
    Base error class for scope lifecycle and digest errors.
    """

    pass


class PhaseConflictError(ScopeError):
    """
    Error thrown when a digest or apply starts while another phase is active.
    """

    def __init__(self, phase: str):
        super().__init__(f"{phase} already in progress")
        self.phase = phase


class DigestConvergenceError(ScopeError):
    """
    Error thrown when watchers keep changing after the allowed digest passes.
    """

    def __init__(self, ttl: int):
        super().__init__(f"{ttl} digest iterations reached")
        self.ttl = ttl
