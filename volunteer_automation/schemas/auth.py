from typing import Literal

from pydantic import BaseModel

Role = Literal["founder", "intern", "volunteer", "teacher", "partner"]


class LoginRequest(BaseModel):
    email: str
    password: str


class UserOut(BaseModel):
    id: str
    email: str
    name: str
    role: Role = "volunteer"


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut
