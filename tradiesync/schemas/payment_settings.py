from typing import Optional

from pydantic import BaseModel, Field


class PaymentSettingsResponse(BaseModel):
    bank_name: str = ""
    bank_bsb: str = ""
    bank_account_number: str = ""
    bank_account_name: str = ""
    payment_terms: int = 14


class PaymentSettingsUpdate(BaseModel):
    """Only the fields supplied are changed. Bank details are stored encrypted."""

    bank_name: Optional[str] = Field(None, max_length=255)
    bank_bsb: Optional[str] = Field(None, max_length=20)
    bank_account_number: Optional[str] = Field(None, max_length=50)
    bank_account_name: Optional[str] = Field(None, max_length=255)
    payment_terms: Optional[int] = Field(None, ge=0, le=365)
