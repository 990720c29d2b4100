"""
Request bodies for the ESP API.  Field aliases match the camelCase JSON
the UI sends.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from esp.types import BusinessDetails, CustomValueInput, TemplateInput


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ConnectRequest(_Body):
    account_key: str = Field("", alias="accountKey")
    provider: str = ""
    api_key: Optional[str] = Field(None, alias="apiKey")


class DisconnectRequest(_Body):
    account_key: str = Field("", alias="accountKey")
    provider: str = "any"


class ValidateRequest(_Body):
    provider: Optional[str] = None
    account_key: Optional[str] = Field(None, alias="accountKey")
    api_key: Optional[str] = Field(None, alias="apiKey")


class TemplateRequest(_Body):
    account_key: str = Field(..., alias="accountKey")
    name: Optional[str] = None
    subject: Optional[str] = None
    preview_text: Optional[str] = Field(None, alias="previewText")
    html: Optional[str] = None

    def to_input(self) -> TemplateInput:
        return TemplateInput(name=self.name, subject=self.subject, preview_text=self.preview_text, html=self.html)


class CustomValuesSyncRequest(_Body):
    account_key: str = Field(..., alias="accountKey")
    values: List[CustomValueInput] = Field(default_factory=list)
    managed_names: Optional[List[str]] = Field(None, alias="managedNames")


class CustomFieldRequest(_Body):
    """GHL custom field definition; keys not declared here pass through unchanged."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: Optional[str] = None
    data_type: Optional[str] = Field(None, alias="dataType")
    placeholder: Optional[str] = None
    model: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class BusinessDetailsRequest(_Body):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = Field(None, alias="postalCode")
    website: Optional[str] = None
    timezone: Optional[str] = None

    def to_details(self) -> BusinessDetails:
        return BusinessDetails(**self.model_dump(by_alias=False))
