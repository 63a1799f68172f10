from pydantic import BaseModel
from datetime import datetime
from typing import List, Optional


class ProfileModel(BaseModel):
    id: str
    username: str
    prefecture: Optional[str] = None
    age_group: Optional[str] = None
    occupation: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None


class GetUsersResponseModel(BaseModel):
    users: List[ProfileModel]


class AvatarResponseModel(BaseModel):
    avatar_url: str
