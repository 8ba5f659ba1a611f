"""
Customer Module - Models
=========================
Saved delivery addresses. One of a user's addresses may be the default.
"""

import enum
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class AddressLabel(str, enum.Enum):
    HOME = "Home"
    SHOP = "Shop"
    OFFICE = "Office"
    OTHER = "Other"


class Address(Base):
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    label = Column(String, default=AddressLabel.HOME, nullable=False)
    full_name = Column(String, nullable=False)
    address = Column(Text, nullable=False)
    phone = Column(String(20), nullable=False)
    state = Column(String, nullable=False)
    city = Column(String, nullable=True)
    zip_code = Column(String(10), nullable=True)
    is_default = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User")

    @property
    def full_address(self) -> str:
        parts = [self.address]
        if self.city:
            parts.append(self.city)
        parts.append(self.state)
        return ", ".join(parts)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "fullName": self.full_name,
            "address": self.address,
            "phone": self.phone,
            "state": self.state,
            "city": self.city,
            "zipCode": self.zip_code,
            "isDefault": self.is_default,
        }
