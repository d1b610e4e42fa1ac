from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PfSenseModel(BaseModel):
    """Base for objects exchanged with the pfSense REST API.

    The API returns ``null`` for unset fields; those fall back to defaults.
    Every field the firewall owns has a default so objects created by hand
    in the pfSense UI still load.
    """

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class BackendServer(PfSenseModel):
    name: str = ""
    address: str = ""
    port: str = ""


class Backend(PfSenseModel):
    id: int | None = None
    name: str = ""
    check_type: str = ""
    monitor_uri: str = ""
    monitor_httpversion: str = ""
    advanced_backend: str = Field("", description="base64 encoded raw backend configuration")
    servers: list[BackendServer] = Field(default_factory=list)


class ACL(PfSenseModel):
    id: int | None = None
    name: str = ""
    expression: str = ""
    value: str = ""


class Action(PfSenseModel):
    id: int | None = None
    action: str = ""
    acl: str = ""
    backend: str = ""


class Frontend(PfSenseModel):
    id: int | None = None
    name: str = ""
    acls: list[ACL] = Field(default_factory=list, alias="ha_acls")
    actions: list[Action] = Field(default_factory=list, alias="a_actionitems")

    def has_acl(self, acl: ACL) -> bool:
        return any(
            a.name == acl.name and a.expression == acl.expression and a.value == acl.value
            for a in self.acls
        )

    def has_action(self, action: Action) -> bool:
        return any(
            a.action == action.action and a.acl == action.acl and a.backend == action.backend
            for a in self.actions
        )


class APIResponse(PfSenseModel):
    status: str = ""
    message: str = ""
    code: int = 0
    data: Any = None
