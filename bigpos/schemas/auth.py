"""
Authentication schemas.
"""
from pydantic import BaseModel, Field, model_validator
from typing import Optional
from enum import Enum


class Role(str, Enum):
    CONSUMER = "consumer"
    RETAILER = "retailer"
    WHOLESALER = "wholesaler"
    ADMIN = "admin"


class RegisterRequest(BaseModel):
    role: Role
    name: str = Field(..., min_length=1, max_length=100)
    email: Optional[str] = Field(None, max_length=120)
    phone: Optional[str] = Field(None, max_length=20)
    password: str = Field(..., min_length=6, max_length=72)
    pin: Optional[str] = Field(None, pattern=r"^\d{4}$")
    # Retailer / wholesaler
    business_name: Optional[str] = Field(None, max_length=120)
    address: Optional[str] = None
    province: Optional[str] = None
    district: Optional[str] = None
    sector: Optional[str] = None

    @model_validator(mode="after")
    def check_identity(self):
        if not self.email and not self.phone:
            raise ValueError("Email or phone is required")
        if self.role == Role.ADMIN:
            raise ValueError("Admin accounts cannot self-register")
        return self


class LoginRequest(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None
    pin: Optional[str] = None
    role: Optional[Role] = None

    @model_validator(mode="after")
    def check_credentials(self):
        if not self.email and not self.phone:
            raise ValueError("Email or phone is required")
        if not self.password and not self.pin:
            raise ValueError("Password or PIN is required")
        return self


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6, max_length=72)


class PinChange(BaseModel):
    current_pin: Optional[str] = None
    new_pin: str = Field(..., pattern=r"^\d{4}$")
