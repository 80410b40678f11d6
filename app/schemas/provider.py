from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Provider(BaseModel):
    """A care provider found by search. Stored and exchanged under its camelCase JSON names."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    specialty: str = ""
    address: str
    phone: str
    website: Optional[str] = None
    booking_url: Optional[str] = Field(default=None, alias="bookingUrl")
    hours: Optional[str] = None
    accepted_insurance: Tuple[str, ...] = Field(default=(), alias="acceptedInsurance")
    distance: Optional[str] = None
    verified: bool = True
    source: Optional[str] = None

    @property
    def identity(self) -> Tuple[str, str]:
        """Saved-provider identity key: (name, phone)."""
        return (self.name, self.phone)


class ToggleSavedRequest(BaseModel):
    user_id: str
    provider: Provider


class SavedProvidersResponse(BaseModel):
    providers: List[Provider]
