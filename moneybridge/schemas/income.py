"""
Request/response schemas for income sources, the webhook inbox and review actions.
JSON bodies use camelCase (projectId, reviewNote, ...); snake_case is also accepted.
"""
import ipaddress
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

AuthType = Literal["token", "hmac", "both"]
SourceType = Literal["linepay", "jkopay", "airbnb", "booking", "custom_api", "manual"]
WebhookStatus = Literal["pending", "confirmed", "rejected"]


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class FieldMapping(ApiModel):
    """Canonical field -> JSON path ("$.data.amount")."""
    amount: Optional[str] = None
    currency: Optional[str] = None
    transaction_id: Optional[str] = None
    paid_at: Optional[str] = None
    description: Optional[str] = None
    payer_name: Optional[str] = None
    payer_contact: Optional[str] = None
    order_id: Optional[str] = None

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def _validate_ip_entries(value: Optional[list[str]]) -> Optional[list[str]]:
    if value is None:
        return value
    cleaned = []
    for entry in value:
        entry = entry.strip()
        try:
            if "/" in entry:
                ipaddress.ip_network(entry, strict=False)
            else:
                ipaddress.ip_address(entry)
        except ValueError:
            raise ValueError(f"'{entry}' is not a valid IP address or CIDR network")
        cleaned.append(entry)
    return cleaned


class IncomeSourceCreate(ApiModel):
    source_name: str = Field(min_length=1, max_length=100)
    source_key: str = Field(pattern=r"^[a-z0-9][a-z0-9_-]{0,49}$")
    source_type: SourceType = "custom_api"
    description: Optional[str] = None
    auth_type: AuthType = "token"
    webhook_secret: Optional[str] = Field(default=None, max_length=255)
    api_token: Optional[str] = Field(default=None, max_length=255)
    allowed_ips: list[str] = Field(default_factory=list)
    default_project_id: Optional[int] = Field(default=None, gt=0)
    default_category_id: Optional[int] = Field(default=None, gt=0)
    field_mapping: FieldMapping = Field(default_factory=FieldMapping)
    default_currency: str = Field(default="TWD", min_length=3, max_length=10)
    currency_conversion_enabled: bool = False
    is_active: bool = True
    auto_confirm: bool = False

    _check_ips = field_validator("allowed_ips")(_validate_ip_entries)


class IncomeSourceUpdate(ApiModel):
    source_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    source_key: Optional[str] = Field(default=None, pattern=r"^[a-z0-9][a-z0-9_-]{0,49}$")
    source_type: Optional[SourceType] = None
    description: Optional[str] = None
    auth_type: Optional[AuthType] = None
    webhook_secret: Optional[str] = Field(default=None, max_length=255)
    api_token: Optional[str] = Field(default=None, max_length=255)
    allowed_ips: Optional[list[str]] = None
    default_project_id: Optional[int] = Field(default=None, gt=0)
    default_category_id: Optional[int] = Field(default=None, gt=0)
    field_mapping: Optional[FieldMapping] = None
    default_currency: Optional[str] = Field(default=None, min_length=3, max_length=10)
    currency_conversion_enabled: Optional[bool] = None
    is_active: Optional[bool] = None
    auto_confirm: Optional[bool] = None

    _check_ips = field_validator("allowed_ips")(_validate_ip_entries)


class IncomeSourceResponse(ApiModel):
    id: int
    source_name: str
    source_key: str
    source_type: str
    description: Optional[str] = None
    auth_type: str
    webhook_secret: Optional[str] = None
    api_token: Optional[str] = None
    allowed_ips: list[str] = Field(default_factory=list)
    default_project_id: Optional[int] = None
    default_category_id: Optional[int] = None
    field_mapping: dict = Field(default_factory=dict)
    default_currency: str
    currency_conversion_enabled: Optional[bool] = None
    is_active: bool
    auto_confirm: bool
    total_received: int = 0
    last_received_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class IncomeWebhookResponse(ApiModel):
    id: int
    source_id: int
    external_transaction_id: Optional[str] = None
    raw_payload: dict | list | None = None
    request_ip: Optional[str] = None
    request_headers: Optional[dict] = None
    signature_valid: Optional[bool] = None
    parsed_amount: Optional[Decimal] = None
    parsed_currency: Optional[str] = None
    parsed_amount_twd: Optional[Decimal] = None
    exchange_rate: Optional[Decimal] = None
    parsed_description: Optional[str] = None
    parsed_paid_at: Optional[datetime] = None
    parsed_payer_name: Optional[str] = None
    parsed_payer_contact: Optional[str] = None
    parsed_order_id: Optional[str] = None
    status: str
    reviewed_by_user_id: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    review_note: Optional[str] = None
    linked_item_id: Optional[int] = None
    linked_record_id: Optional[int] = None
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WebhookListResponse(ApiModel):
    data: list[IncomeWebhookResponse]
    total: int
    page: int
    page_size: int


class PendingCountResponse(ApiModel):
    count: int


class ConfirmWebhookRequest(ApiModel):
    project_id: int = Field(gt=0)
    category_id: Optional[int] = Field(default=None, gt=0)
    item_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    review_note: Optional[str] = Field(default=None, max_length=500)


class BatchConfirmWebhookRequest(ApiModel):
    ids: list[int] = Field(min_length=1, max_length=100)
    project_id: int = Field(gt=0)
    category_id: Optional[int] = Field(default=None, gt=0)
    review_note: Optional[str] = Field(default=None, max_length=500)

    @field_validator("ids")
    @classmethod
    def _positive_ids(cls, value: list[int]) -> list[int]:
        if any(i <= 0 for i in value):
            raise ValueError("ids must be positive integers")
        return value


class RejectWebhookRequest(ApiModel):
    review_note: Optional[str] = Field(default=None, max_length=500)


class ConfirmResultResponse(ApiModel):
    success: bool
    webhook_id: int
    payment_item_id: Optional[int] = None
    payment_record_id: Optional[int] = None
    error: Optional[str] = None


class BatchConfirmResponse(ApiModel):
    results: list[ConfirmResultResponse]
    success_count: int
    fail_count: int


class MessageResponse(ApiModel):
    message: str
    id: Optional[int] = None
    status: Optional[str] = None
