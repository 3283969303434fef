from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class RefreshTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str | None = Field(default=None, alias="refreshToken")


class GoogleAuthRequest(BaseModel):
    google_id: str | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    profile_photo: str | None = None


class BalanceAddRequest(BaseModel):
    amount: Decimal = Field(gt=0)


class ItemCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    value: Decimal
    date: str = Field(min_length=1)
    section: str = Field(min_length=1)
    payment_mode: str = Field(min_length=1)
    target: Decimal | None = None
    notes: str | None = None


class ItemUpdateRequest(BaseModel):
    title: str | None = None
    value: Decimal | None = None
    date: str | None = None
    section: str | None = None
    payment_mode: str | None = None
    target: Decimal | None = None
    notes: str | None = None


class CategoryCreateRequest(BaseModel):
    label: str = Field(min_length=1)
    iconName: str | None = None
    iconColor: str | None = None
    iconLibrary: str | None = None
    target: Decimal | None = None


class CategoryTargetRequest(BaseModel):
    category: str = Field(min_length=1)
    target: Decimal
