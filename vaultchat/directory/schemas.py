from pydantic import BaseModel
from typing import List


class UserData(BaseModel):
    id: str
    name: str
    email: str


class UserSearchResponseModel(BaseModel):
    users: List[UserData]


class UserProfileResponseModel(BaseModel):
    user: UserData


class EnsureDirectoryEntryResponseModel(BaseModel):
    directory_entry_ready: bool
