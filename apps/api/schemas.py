from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional, List, Dict

from services.membership.models import Profile, ProfileStatus, Role


class ProfileResponse(BaseModel):
    id: Optional[str] = None  # identity id, absent until the member has a credential
    email: str
    name: str
    role: Role
    status: ProfileStatus

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_profile(cls, profile: Profile) -> "ProfileResponse":
        return cls(
            id=profile.id,
            email=profile.email,
            name=profile.name,
            role=profile.role,
            status=profile.status,
        )


class AccessResponse(BaseModel):
    """What the client should do with a resolved profile."""
    state: str  # AccessStateKind value
    enterable: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    screen: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    profile: ProfileResponse
    access: AccessResponse


class MeResponse(BaseModel):
    profile: ProfileResponse
    access: AccessResponse


class MembershipRequestCreate(BaseModel):
    email: EmailStr
    name: Optional[str] = Field(default=None, max_length=200)


class ActivationRequest(BaseModel):
    """Set-password form submitted from the activation link."""
    email: EmailStr
    token: str
    password: str
    password_confirm: Optional[str] = None


class PasswordStrengthResponse(BaseModel):
    score: int
    label: str
    checks: Dict[str, bool]
    requirements: str


class RoleUpdate(BaseModel):
    role: Role


class ProfileListingResponse(BaseModel):
    profiles: List[ProfileResponse]
    counts: Dict[str, int]
    pending: List[ProfileResponse]
    approved: List[ProfileResponse]
    active: List[ProfileResponse]
    inactive: List[ProfileResponse]


class ActivationLinkResponse(BaseModel):
    email: str
    activation_url: str
