"""Decoding of payment provider notifications.

The provider posts `Ds_SignatureVersion`, `Ds_MerchantParameters` (base64
JSON) and `Ds_Signature`. Signature checks belong to the gateway
integration; install one with `DonationService(decoder=...)`.
"""

import base64
import binascii
import json

from donaflow.services.conversions.attribution import ATTRIBUTION_FIELDS


def decode_merchant_parameters(encoded: str) -> dict:
    """Decode the base64 (standard or url-safe) JSON parameter blob."""

    normalized = encoded.strip().replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    try:
        decoded = json.loads(base64.b64decode(normalized).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError(f"malformed Ds_MerchantParameters: {exc}") from exc
    if not isinstance(decoded, dict):
        raise ValueError("Ds_MerchantParameters is not a JSON object")
    return decoded


def default_decoder(body: dict) -> dict:
    """Return the notification parameters carried by `body`.

    Only the encoded parameter blob is trusted; flat `Ds_*` fields posted
    alongside or instead of it are ignored.
    """

    encoded = body.get("Ds_MerchantParameters")
    if not encoded or not isinstance(encoded, str):
        raise ValueError("notification has no Ds_MerchantParameters")
    return decode_merchant_parameters(encoded)


def response_code(params: dict) -> int:
    """Numeric `Ds_Response`; a missing or garbled code counts as a failure."""

    try:
        return int(str(params.get("Ds_Response", "9999")).strip())
    except ValueError:
        return 9999


def amount_cents(params: dict) -> int | None:
    try:
        return int(params["Ds_Amount"])
    except (KeyError, TypeError, ValueError):
        return None


def merchant_attribution(params: dict) -> dict:
    """Attribution tokens echoed back through `Ds_MerchantData`, if any."""

    raw = params.get("Ds_MerchantData")
    if not raw:
        return {}
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
    except json.JSONDecodeError:
        return {}
    if not isinstance(data, dict):
        return {}
    return {field: data[field] for field in ATTRIBUTION_FIELDS if isinstance(data.get(field), str) and data[field]}
