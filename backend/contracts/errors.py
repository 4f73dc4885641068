"""Exception hierarchy for the contract register.

The web layer maps these to HTTP responses; nothing here is fatal to the
process.
"""

from __future__ import annotations

from typing import List, Optional


class ContractRegisterError(Exception):
    """Base class for every error raised by the register."""


class ReferenceNotFoundError(ContractRegisterError, LookupError):
    """A ward or contract id did not resolve."""

    def __init__(self, kind: str, ref: object):
        self.kind = kind
        self.ref = ref
        super().__init__(f"{kind} not found: {ref}")


class NumberingError(ContractRegisterError, ValueError):
    """A contract number cannot be turned into a liquidation number."""


class SequenceOverflowError(NumberingError):
    """The yearly sequence exceeded two digits under the ``reject`` policy."""


class InvalidTransitionError(ContractRegisterError):
    """The contract is not in the state a transition requires."""

    def __init__(
        self,
        contract_id: int,
        current: object,
        expected: object,
        action: str,
        message: Optional[str] = None,
    ):
        self.contract_id = contract_id
        self.current = current
        self.expected = expected
        self.action = action
        super().__init__(
            message
            or f"Cannot {action} contract {contract_id}: status is {getattr(current, 'value', current)!r}, "
            f"expected {getattr(expected, 'value', expected)!r}"
        )


class ValidationError(ContractRegisterError, ValueError):
    """User input failed presentation-boundary checks."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid input")


class PersistenceError(ContractRegisterError):
    """The key-value store could not serialise or write a value."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message)


class RestoreFormatError(ContractRegisterError, ValueError):
    """A backup document is unparseable or lacks required collections."""


class AuthorizationError(ContractRegisterError):
    """The current user lacks the role an operation requires."""


class LoginRequiredError(AuthorizationError):
    """No user is logged in."""


__all__ = [
    "ContractRegisterError",
    "ReferenceNotFoundError",
    "NumberingError",
    "SequenceOverflowError",
    "InvalidTransitionError",
    "ValidationError",
    "PersistenceError",
    "RestoreFormatError",
    "AuthorizationError",
    "LoginRequiredError",
]
