# models.py
# Description: Local user entity shared by the store, the sync engine and the repository.
#
# Imports
from typing import Any, Dict
#
# 3rd-party Libraries
from pydantic import BaseModel, ConfigDict, Field
#
#######################################################################################################################
#
# Functions:

LOCAL_ID_PREFIX = "local_"

# Business columns, in storage order. The sync flags are bookkeeping, not business data.
BUSINESS_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "age",
    "user_name",
    "position_title",
    "image",
)


def is_local_id(user_id: str, prefix: str = LOCAL_ID_PREFIX) -> bool:
    """True if the id was minted locally and the user has never been created remotely."""
    return bool(user_id) and user_id.startswith(prefix)


class User(BaseModel):
    """A user row as held by the local store."""
    model_config = ConfigDict(validate_assignment=True)

    id: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    age: int = Field(default=0, ge=0)
    user_name: str = ""
    position_title: str = ""
    image: str = ""

    # Local-only sync bookkeeping
    pending_sync: bool = False
    pending_delete: bool = False

    def business_data(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in BUSINESS_FIELDS}

    def same_business_data(self, other: "User") -> bool:
        return self.business_data() == other.business_data()

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

#
# End of models.py
#######################################################################################################################
