"""
Access decisions for a resolved profile.

``evaluate_access`` is pure; ``AccessController.enforce`` adds the single side
effect, the forced sign-out of a disabled account.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from services.membership.identity_gateway import IdentityGateway
from services.membership.models import Profile, ProfileStatus

logger = logging.getLogger(__name__)


class AccessReason(str, Enum):
    ACTIVE = "active"
    ACCOUNT_DISABLED = "account disabled"
    AWAITING_REVIEW = "awaiting review"
    ACTIVATION_REQUIRED = "activate your password first"


MESSAGES = {
    AccessReason.ACTIVE: "",
    AccessReason.ACCOUNT_DISABLED: "Your account has been disabled. Contact an administrator.",
    AccessReason.AWAITING_REVIEW: "Your membership request is awaiting review.",
    AccessReason.ACTIVATION_REQUIRED: "Your account was approved. Activate your password first using the link in your email.",
}


@dataclass(frozen=True)
class AccessDecision:
    enterable: bool
    reason: AccessReason
    force_sign_out: bool = False

    @property
    def message(self) -> str:
        return MESSAGES[self.reason]


_DECISIONS = {
    ProfileStatus.ACTIVE: AccessDecision(True, AccessReason.ACTIVE),
    ProfileStatus.INACTIVE: AccessDecision(False, AccessReason.ACCOUNT_DISABLED, force_sign_out=True),
    ProfileStatus.PENDING: AccessDecision(False, AccessReason.AWAITING_REVIEW),
    ProfileStatus.APPROVED: AccessDecision(False, AccessReason.ACTIVATION_REQUIRED),
}


def evaluate_access(profile: Profile) -> AccessDecision:
    return _DECISIONS[profile.status]


class AccessController:

    def __init__(self, gateway: IdentityGateway):
        self._gateway = gateway

    def evaluate(self, profile: Profile) -> AccessDecision:
        return evaluate_access(profile)

    async def enforce(self, profile: Profile, decision: Optional[AccessDecision] = None) -> AccessDecision:
        decision = decision or evaluate_access(profile)
        if decision.force_sign_out:
            logger.info(
                "Signing out disabled account",
                extra={"extra_fields": {"email": profile.email}},
            )
            await self._gateway.sign_out()
        return decision
