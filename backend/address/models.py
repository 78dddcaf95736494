from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

ADDRESS_FIELDS = ("address_line", "city", "state", "pincode", "country", "mobile")


class AddressIn(BaseModel):
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    country: Optional[str] = None
    mobile: Optional[str] = None

    def missing_fields(self):
        return [f for f in ADDRESS_FIELDS if not (getattr(self, f) or "").strip()]


class AddressUpdate(AddressIn):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[int] = Field(default=None, alias="_id")

    def changes(self) -> Dict[str, str]:
        """Only the fields the client actually sent with a value; blanks leave the column alone."""
        values = {f: (getattr(self, f) or "").strip() for f in ADDRESS_FIELDS}
        return {k: v for k, v in values.items() if v}


class AddressRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[int] = Field(default=None, alias="_id")
