"""Request/response bodies for /auth endpoints. Field names follow the frontend's camelCase contract."""

from datetime import datetime

from pydantic import BaseModel

from repairdesk.services.sessions import IssuedTokens, Principal


# Request fields are optional so that missing values produce a 400 with a readable message,
# not a 422 validation dump.
class LoginBody(BaseModel):
    username: str | None = None
    password: str | None = None


class RefreshBody(BaseModel):
    refreshToken: str | None = None


class LogoutBody(BaseModel):
    refreshToken: str | None = None


class RegisterBody(BaseModel):
    username: str | None = None
    email: str | None = None
    password: str | None = None
    full_name: str | None = None
    role: str | None = "employee"


class ChangePasswordBody(BaseModel):
    currentPassword: str | None = None
    newPassword: str | None = None


class UpdateUserBody(BaseModel):
    full_name: str | None = None
    role: str | None = None
    is_active: bool | None = None


class UserOut(BaseModel):
    id: int
    username: str
    email: str
    full_name: str
    role: str

    @classmethod
    def from_principal(cls, principal: Principal) -> "UserOut":
        return cls(
            id=principal.id,
            username=principal.username,
            email=principal.email,
            full_name=principal.full_name,
            role=principal.role,
        )


class UserAdminOut(UserOut):
    is_active: bool
    created_at: datetime
    last_login: datetime | None = None


class ExpiresIn(BaseModel):
    accessToken: str
    refreshToken: str
    accessExpiresAt: datetime
    refreshExpiresAt: datetime


class TokenPair(BaseModel):
    accessToken: str
    refreshToken: str
    user: UserOut
    expiresIn: ExpiresIn

    @classmethod
    def from_issued(cls, issued: IssuedTokens) -> "TokenPair":
        return cls(
            accessToken=issued.access_token,
            refreshToken=issued.refresh_token,
            user=UserOut.from_principal(issued.user),
            expiresIn=ExpiresIn(
                accessToken=issued.access_ttl,
                refreshToken=issued.refresh_ttl,
                accessExpiresAt=issued.access_expires_at,
                refreshExpiresAt=issued.refresh_expires_at,
            ),
        )


class TokenResponse(BaseModel):
    success: bool = True
    data: TokenPair


class SessionOut(BaseModel):
    id: int
    created_at: datetime
    last_used_at: datetime
    user_agent: str | None = None
    ip_address: str | None = None


class SessionsResponse(BaseModel):
    success: bool = True
    data: list[SessionOut]


class MeData(BaseModel):
    user: UserOut


class MeResponse(BaseModel):
    success: bool = True
    data: MeData


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class RegisteredUser(UserOut):
    message: str = "User created successfully"


class RegisterResponse(BaseModel):
    success: bool = True
    data: RegisteredUser


class UsersResponse(BaseModel):
    success: bool = True
    data: list[UserAdminOut]
