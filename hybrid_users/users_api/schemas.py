# hybrid_users/users_api/schemas.py
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from hybrid_users.models import User


# --- Wire format of a user record ---
# The service speaks camelCase and knows nothing about the local sync flags; anything it
# sends beyond the business fields (pendingSync included) is ignored on the way in.
class RemoteUser(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    email: str = ""
    age: int = 0
    user_name: str = Field(default="", alias="userName")
    position_title: str = Field(default="", alias="positionTitle")
    image: str = Field(default="", alias="imagen")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value)

    @field_validator("age", mode="before")
    @classmethod
    def _coerce_age(cls, value: Any) -> Any:
        if value is None or value == "":
            return 0
        return value

    @classmethod
    def from_user(cls, user: User) -> "RemoteUser":
        return cls(id=user.id or None, **user.business_data())

    def to_user(self) -> User:
        """Local view of a server record. Server data is clean by definition."""
        return User(
            id=self.id or "",
            first_name=self.first_name,
            last_name=self.last_name,
            email=self.email,
            age=max(self.age, 0),
            user_name=self.user_name,
            position_title=self.position_title,
            image=self.image,
            pending_sync=False,
            pending_delete=False,
        )

    def to_payload(self, include_id: bool = True) -> Dict[str, Any]:
        exclude = None if include_id else {"id"}
        return self.model_dump(by_alias=True, exclude=exclude, exclude_none=True)


def parse_user_list(data: Any) -> List[RemoteUser]:
    """Accepts a bare JSON array or an object wrapping it under 'items' / 'data'."""
    if isinstance(data, dict):
        data = data.get("items", data.get("data", []))
    if not isinstance(data, list):
        raise ValueError(f"Expected a list of users, got {type(data).__name__}")
    return [RemoteUser.model_validate(item) for item in data]
