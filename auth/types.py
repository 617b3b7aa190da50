"""Domain types: sessions, account state and verification factors."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Union

from pydantic import BaseModel, Field

from auth.exceptions import InputInvalidError


class AuthSession(BaseModel):
    """An authenticated principal, created only from an authority success."""

    session_token: str = Field(..., min_length=1, description="Opaque token from the authority")
    user_id: str = Field(..., min_length=1)
    display_name: str = ""
    two_factor_enabled: bool = False


class AccountState(BaseModel):
    """Account facts that change which factors an action requires."""

    user_id: str
    email: str | None = None
    two_factor_enabled: bool = False
    funds_locked: bool = False


class FactorKind(Enum):
    """Kinds of evidence an action may require."""

    PASSWORD = "password"
    BIOMETRIC_IMAGE = "biometric_image"
    EMAIL_CODE = "email_code"
    AUTHENTICATOR_CODE = "authenticator_code"
    ALTERNATE_IDENTITY = "alternate_identity"


_DIGITS = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class Password:
    kind: ClassVar[FactorKind] = FactorKind.PASSWORD
    value: str = field(repr=False)

    def __post_init__(self):
        if not self.value:
            raise InputInvalidError("Please enter your password", field=self.kind.value)


@dataclass(frozen=True)
class BiometricImage:
    """A single still frame captured from the camera (JPEG bytes)."""

    kind: ClassVar[FactorKind] = FactorKind.BIOMETRIC_IMAGE
    image: bytes = field(repr=False)

    def __post_init__(self):
        if not self.image:
            raise InputInvalidError("Please capture your face", field=self.kind.value)


@dataclass(frozen=True)
class EmailCode:
    kind: ClassVar[FactorKind] = FactorKind.EMAIL_CODE
    value: str = field(repr=False)

    def __post_init__(self):
        if not _DIGITS.fullmatch(self.value or ""):
            raise InputInvalidError("Please enter the verification code", field=self.kind.value)


@dataclass(frozen=True)
class AuthenticatorCode:
    kind: ClassVar[FactorKind] = FactorKind.AUTHENTICATOR_CODE
    LENGTH: ClassVar[int] = 6
    value: str = field(repr=False)

    def __post_init__(self):
        if len(self.value or "") != self.LENGTH or not _DIGITS.fullmatch(self.value):
            raise InputInvalidError(
                f"Please enter your {self.LENGTH}-digit authenticator code",
                field=self.kind.value,
            )


@dataclass(frozen=True)
class AlternateIdentity:
    kind: ClassVar[FactorKind] = FactorKind.ALTERNATE_IDENTITY
    LENGTH: ClassVar[int] = 7
    id: str

    def __post_init__(self):
        if len(self.id or "") != self.LENGTH or not _DIGITS.fullmatch(self.id):
            raise InputInvalidError(
                f"Please enter a valid {self.LENGTH}-digit ID",
                field=self.kind.value,
            )


VerificationFactor = Union[Password, BiometricImage, EmailCode, AuthenticatorCode, AlternateIdentity]
