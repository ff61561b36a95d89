"""User domain models."""

from pydantic import BaseModel, ConfigDict, Field


class AuthenticatedUser(BaseModel):
    """The caller every task operation is scoped to."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Owner ID stamped on every task the user creates")
    email: str = Field(..., description="Email shown in outbound notifications")
