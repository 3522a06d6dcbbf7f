from pydantic import BaseModel, ConfigDict, Field

class SignupIn(BaseModel):
    username: str = Field(min_length=1, max_length=150)
    password: str = Field(min_length=1)

# no length rules here, a bad login is always a 401
class LoginIn(BaseModel):
    username: str
    password: str

class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str

class AuthOut(BaseModel):
    message: str
    user: UserOut
    token: str
