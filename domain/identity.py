"""Domain model for the verified caller identity."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Identity:
    """Caller identity as resolved by the authentication collaborator."""
    username: str

    def __post_init__(self):
        if not self.username:
            raise ValueError("username must not be empty")

    @property
    def first_letter(self) -> str:
        return self.username[0]
