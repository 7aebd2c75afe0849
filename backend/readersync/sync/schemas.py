"""Pydantic request bodies for the sync endpoints.

Field names follow the clients' camelCase wire format. Older clients send `id`,
`sha256` and `filesize`; those are accepted as aliases.
"""

from typing import Annotated, Any, Optional

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, StrictInt


def _parse_item_id(value: Any) -> Optional[int]:
    """Accept a non-negative integer as a JSON number or as a string of digits."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("bad id")
    if isinstance(value, int):
        if value < 0:
            raise ValueError("bad id")
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    raise ValueError("bad id")


def _parse_flag(value: Any) -> bool:
    """Accept a JSON bool or "true"/"false"/"1"/"0"."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        if value in ("true", "1"):
            return True
        if value in ("false", "0"):
            return False
    raise ValueError("invalid value for force tag")


ItemId = Annotated[Optional[int], BeforeValidator(_parse_item_id)]
Flag = Annotated[bool, BeforeValidator(_parse_flag)]


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ProbeRequest(_Body):
    table: str
    file_id: str = Field(validation_alias=AliasChoices("fileId", "file_id"))
    item_id: ItemId = Field(default=None, validation_alias=AliasChoices("id", "itemId"))
    # Client-side timestamp; accepted for compatibility but not used
    local_updated_at: Optional[StrictInt] = Field(default=None, validation_alias="localUpdatedAt")


class PullRequest(_Body):
    table: str
    file_id: str = Field(validation_alias=AliasChoices("fileId", "file_id"))
    item_id: ItemId = Field(default=None, validation_alias=AliasChoices("id", "itemId"))


class SinceRequest(_Body):
    table: str
    since: StrictInt
    limit: Optional[StrictInt] = None


class PushRow(BaseModel):
    """One client row. Fields other than the key and updatedAt are the payload."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    file_id: str = Field(validation_alias=AliasChoices("fileId", "file_id"))
    item_id: ItemId = Field(default=None, validation_alias=AliasChoices("id", "itemId"))
    updated_at: StrictInt = Field(validation_alias=AliasChoices("updatedAt", "updated_at"))


class PushRequest(_Body):
    table: str
    row: PushRow
    force: Flag = False


class DeleteRequest(_Body):
    table: str
    file_id: str = Field(validation_alias=AliasChoices("fileId", "file_id"))
    item_id: ItemId = Field(default=None, validation_alias=AliasChoices("id", "itemId"))


class ResolveRequest(_Body):
    content_hash: str = Field(validation_alias=AliasChoices("contentHash", "sha256"))
    size: StrictInt = Field(validation_alias=AliasChoices("size", "filesize"))
