"""
Pydantic schemas for the public signing endpoints.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator, model_validator

from petitions.core.exceptions import ValidationFailed
from petitions.services.constituency_service import normalize_postcode

POSTCODE_PATTERN = re.compile(r"^(GIR0AA|[A-Z]{1,2}[0-9][0-9A-Z]?[0-9][A-Z]{2})$")


class SignatureCreateRequest(BaseModel):
    """Signing form submission"""
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    postcode: Optional[str] = None
    location_code: str = Field("GB", min_length=2, max_length=30)
    uk_citizenship: str
    notify_by_email: bool = False

    @field_validator('name')
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Name must be completed')
        return v

    @field_validator('uk_citizenship')
    @classmethod
    def validate_citizenship(cls, v: str) -> str:
        if v != "1":
            raise ValueError('You must be a British citizen or normally live in the UK to sign')
        return v

    @field_validator('location_code')
    @classmethod
    def upcase_location(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode='after')
    def validate_postcode(self) -> 'SignatureCreateRequest':
        """Postcodes are required, and normalized, for signers in the UK"""
        if self.location_code == "GB":
            postcode = normalize_postcode(self.postcode)
            if not postcode:
                raise ValueError('postcode: Postcode must be completed')
            if not POSTCODE_PATTERN.match(postcode):
                raise ValueError('postcode: Postcode not recognised')
            self.postcode = postcode
        else:
            self.postcode = normalize_postcode(self.postcode) or None
        return self


def _field_errors(error: ValidationError) -> Dict[str, List[str]]:
    errors: Dict[str, List[str]] = {}
    for item in error.errors():
        loc = item.get("loc") or ()
        message = item.get("msg", "is invalid").removeprefix("Value error, ")
        if loc:
            field = str(loc[0])
        else:
            # Model-level validators prefix the message with the field name
            field, _, rest = message.partition(": ")
            if rest:
                message = rest
            else:
                field = "base"
        errors.setdefault(field, []).append(message)
    return errors


def parse_signature_form(data: Any) -> SignatureCreateRequest:
    """
    Validate a raw form payload.

    Raises:
        ValidationFailed: With messages grouped by field
    """
    if not isinstance(data, dict):
        raise ValidationFailed({"base": ["Signature form must be an object"]})
    try:
        return SignatureCreateRequest.model_validate(data)
    except ValidationError as e:
        raise ValidationFailed(_field_errors(e))


class FormRequestResponse(BaseModel):
    petition_id: int
    form_token: str
    form_requested_at: datetime
    location_code: str = "GB"


class SubmitResponse(BaseModel):
    outcome: str
    signature_id: int
    petition_id: int
    redirect_to: str


class VerifyResponse(BaseModel):
    status: str
    signature_id: int
    petition_id: int
    newly_validated: bool = False
    redirect_to: str


class SignedResponse(BaseModel):
    show: bool
    signature_id: int
    petition_id: int
    redirect_to: Optional[str] = None


class ThankYouResponse(BaseModel):
    petition_id: int
    signature_id: Optional[int] = None


class UnsubscribeResponse(BaseModel):
    signature_id: int
    petition_id: int
    notify_by_email: bool
