from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence


@dataclass(frozen=True)
class UserRecord:
    """One exported user entity, as produced by the row source."""

    id: Optional[int]
    username: Optional[str]
    email: Optional[str]
    age: Optional[int] = None
    department: Optional[str] = None
    created_at: Optional[datetime] = None
    active: Optional[bool] = None

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "UserRecord":
        """
        Build a record from a DB-API tuple in USER_COLUMNS order:
        (id, username, email, age, department, created_at, active).
        Oracle has no BOOLEAN column type, so NUMBER(1) is coerced here.
        """
        user_id, username, email, age, department, created_at, active = row
        return cls(
            id=int(user_id) if user_id is not None else None,
            username=username,
            email=email,
            age=int(age) if age is not None else None,
            department=department,
            created_at=created_at,
            active=bool(active) if active is not None else None,
        )
