"""Plain credential container shared by the vault, the browser driver and the linking flow."""

from dataclasses import dataclass, field

from .errors import ValidationError


@dataclass(frozen=True)
class Credentials:
    """Third-party username and password. The password never appears in repr()."""
    username: str
    password: str = field(repr=False)

    @property
    def is_complete(self) -> bool:
        return bool(self.username and self.password)

    @classmethod
    def parse(cls, username: str | None, password: str | None) -> "Credentials":
        """Build credentials from user input, rejecting blank values."""
        username = (username or "").strip()
        password = password or ""
        if not username or not password:
            raise ValidationError("username and password are required")
        if "@" not in username:
            raise ValidationError(
                "username must be an email address",
                public_message="Please enter your Penn State email address",
            )
        return cls(username=username, password=password)
