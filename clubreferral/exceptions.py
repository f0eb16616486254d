"""
Referral pipeline error kinds.

Ineligibility (inactive code, disabled program, cap reached) is never
raised - services return None/False for those. These exceptions are for
out-of-protocol calls and operational failures only.
"""
from typing import Optional


class ReferralError(Exception):
    """Base class for referral pipeline errors."""
    pass


class ReferralNotFoundError(ReferralError, LookupError):
    """Raised when an operation targets a row that does not exist."""

    def __init__(self, entity: str, identifier):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class InvalidTransitionError(ReferralError):
    """Raised when a referral or reward is asked to move out of protocol."""

    def __init__(self, entity: str, current_status: str, action: str, detail: Optional[str] = None):
        self.entity = entity
        self.current_status = current_status
        self.action = action
        message = f"Cannot {action} {entity} in status {current_status}"
        super().__init__(f"{message}: {detail}" if detail else message)


class CodeGenerationExhaustedError(ReferralError):
    """Raised when no unique referral code was found within the retry budget."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"No unique referral code after {attempts} attempts")


class InvalidRewardConfigError(ReferralError):
    """Raised when enabling a program whose reward shape is incomplete."""
    pass


class RewardDistributionError(ReferralError):
    """
    Raised when the wallet collaborator fails to credit a reward.
    The reward has already been marked FAILED when this is raised;
    the underlying error is kept as __cause__.
    """

    def __init__(self, reward_id, reason: Optional[str] = None):
        self.reward_id = reward_id
        self.reason = reason
        super().__init__(f"Reward {reward_id} distribution failed: {reason}")
