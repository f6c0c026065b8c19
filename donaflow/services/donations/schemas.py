"""API request/response schemas for donation endpoints."""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, Field


class DonationCreateRequest(BaseModel):
    """Payload posted by the payment form when the donor clicks donate.

    The checkout page posts `donationAmount` with the donor's form fields
    and its browser-side `event_id`; older callers post `amount` and `name`.
    """

    amount: float = Field(gt=0, validation_alias=AliasChoices("amount", "donationAmount"))
    fbclid: str | None = None
    fbp: str | None = None
    fbc: str | None = None
    name: str | None = None
    firstName: str | None = None
    lastName: str | None = None
    cardName: str | None = None
    email: str | None = None
    country: str | None = None
    event_id: str | None = None

    def donor_name(self) -> str | None:
        """Explicit name, else first + last name, else the name on the card."""

        if self.name and self.name.strip():
            return self.name.strip()
        full = " ".join(part.strip() for part in (self.firstName, self.lastName) if part and part.strip())
        if full:
            return full
        return self.cardName.strip() if self.cardName and self.cardName.strip() else None

    def country_code(self) -> str | None:
        """Two-letter country code, upper-cased; anything else is dropped."""

        code = (self.country or "").strip().upper()
        return code if len(code) == 2 and code.isalpha() else None


class DonationCreateResponse(BaseModel):
    ok: bool = True
    orderId: str
    amountCents: int


class DonationStatusResponse(BaseModel):
    orderId: str
    amountCents: int
    conversionSent: bool


class LatestEventIdResponse(BaseModel):
    event_id: str | None = None


class ConversionLogResponse(BaseModel):
    id: str
    donation_id: int
    status: str
    attempts: int
    last_attempt: datetime | None = None
    error: str | None = None
