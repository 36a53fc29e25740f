"""Domain models for campaigns."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Campaign:
    """A named collection of game sessions owned by a user."""

    id: str
    name: str
    owner: str
    created_at: str
    description: str | None = None
    deleted: bool = False


def campaign_from_graphql(row: dict[str, object]) -> Campaign:
    """Map an AppSync campaign object to a campaign."""
    description = row.get("description")
    return Campaign(
        id=str(row["id"]),
        name=str(row.get("name") or ""),
        owner=str(row.get("owner") or ""),
        created_at=str(row.get("createdAt") or ""),
        description=str(description) if description is not None else None,
        deleted=bool(row.get("_deleted")),
    )
