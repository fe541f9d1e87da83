"""
Pydantic schemas for the /identify endpoint
Handles request validation and response serialization
Treats "null" and empty strings as missing values
"""

import math
from typing import List, Optional, Dict, Any
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from .contact import ConsolidatedIdentity


def _blank_to_none(v):
    if isinstance(v, str) and v.strip().lower() in ['null', '']:
        return None
    return v


class IdentifyRequest(BaseModel):
    """
    Request schema for the /identify endpoint
    Validates that at least one of email or phoneNumber is provided
    Accepts "phone" as an alternative key for phoneNumber
    """
    email: Optional[str] = Field(
        None,
        max_length=255,
        description="Customer email address",
        examples=["customer@example.com", None]
    )
    phoneNumber: Optional[str] = Field(
        None,
        max_length=20,
        validation_alias=AliasChoices("phoneNumber", "phone"),
        description="Customer phone number",
        examples=["+1234567890", "123456", None]
    )

    @field_validator('email', mode='before')
    @classmethod
    def validate_email(cls, v) -> Optional[str]:
        """
        Clean email input
        Matching is exact, so beyond trimming the value is stored as given
        """
        v = _blank_to_none(v)
        if v is None:
            return None

        if not isinstance(v, str):
            raise ValueError('Email must be a string')

        v = v.strip()
        if '@' not in v:
            raise ValueError('Invalid email format: email must contain @')
        return v

    @field_validator('phoneNumber', mode='before')
    @classmethod
    def validate_phone_number(cls, v) -> Optional[str]:
        """
        Clean phone number input
        Numbers are accepted and converted to their string form
        """
        v = _blank_to_none(v)
        if v is None:
            return None

        # bool is an int subclass
        if isinstance(v, bool):
            raise ValueError('Phone number must be a string or number')
        if isinstance(v, float):
            if not math.isfinite(v):
                raise ValueError('Phone number must be a finite number')
            v = str(int(v)) if v.is_integer() else str(v)
        elif isinstance(v, int):
            v = str(v)

        if not isinstance(v, str):
            raise ValueError('Phone number must be a string or number')

        return v.strip()

    @model_validator(mode='after')
    def validate_at_least_one_field(self):
        """
        Ensure at least one of email or phoneNumber is provided
        """
        if not self.email and not self.phoneNumber:
            raise ValueError('Either email or phoneNumber must be provided')
        return self

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "examples": [
                {
                    "email": "mcfly@hillvalley.edu",
                    "phoneNumber": "123456"
                },
                {
                    "email": "lorraine@hillvalley.edu",
                    "phoneNumber": None
                },
                {
                    "email": None,
                    "phoneNumber": "123456"
                }
            ]
        }


class ContactResponse(BaseModel):
    """
    Contact information in the API response
    Contains consolidated contact data for a customer
    """
    primaryContatctId: int = Field(
        description="ID of the primary contact (key spelling is part of the public contract)"
    )
    emails: List[str] = Field(
        description="All email addresses of the customer, primary's first",
        examples=[["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"]]
    )
    phoneNumbers: List[str] = Field(
        description="All phone numbers of the customer, primary's first",
        examples=[["123456"]]
    )
    secondaryContactIds: List[int] = Field(
        description="IDs of all secondary contacts linked to the primary, oldest first",
        examples=[[23]]
    )


class IdentifyResponse(BaseModel):
    """
    Response schema for the /identify endpoint
    Contains the consolidated contact information
    """
    contact: ContactResponse = Field(
        description="Consolidated contact information"
    )

    @classmethod
    def from_identity(cls, identity: ConsolidatedIdentity) -> "IdentifyResponse":
        return cls(
            contact=ContactResponse(
                primaryContatctId=identity.primary_id,
                emails=identity.emails,
                phoneNumbers=identity.phone_numbers,
                secondaryContactIds=identity.secondary_ids,
            )
        )

    class Config:
        json_schema_extra = {
            "example": {
                "contact": {
                    "primaryContatctId": 1,
                    "emails": ["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"],
                    "phoneNumbers": ["123456"],
                    "secondaryContactIds": [23]
                }
            }
        }


class ErrorResponse(BaseModel):
    """
    Error response schema for API errors
    """
    error: str = Field(
        description="Error type or category"
    )
    message: str = Field(
        description="Human-readable error message"
    )
    details: Optional[Dict[str, Any]] = Field(
        None,
        description="Additional error details"
    )

    class Config:
        json_schema_extra = {
            "examples": [
                {
                    "error": "InvalidInput",
                    "message": "Either email or phoneNumber must be provided",
                    "details": {"errors": [{"field": "body", "message": "..."}]}
                },
                {
                    "error": "StoreUnavailable",
                    "message": "Contact store is currently unavailable. Please try again later."
                }
            ]
        }
