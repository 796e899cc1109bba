"""
Phone Number Normalization Utilities

WhatsApp identifies customers by wa_id: the international number as bare
digits (no '+', no spaces). Uses Google's libphonenumber (via the
phonenumbers package) to turn user-entered numbers into that form.
"""
import re
import logging
from typing import Optional

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat

logger = logging.getLogger("phone_utils")


def to_wa_id(phone: Optional[str], default_region: Optional[str] = None) -> str:
    """
    Normalize a phone number to WhatsApp's wa_id format.

    Examples:
        >>> to_wa_id("+1 (555) 123-4567")
        "15551234567"

        >>> to_wa_id("9876543210", default_region="IN")
        "919876543210"

        >>> to_wa_id("15551234567")
        "15551234567"

    Numbers that libphonenumber cannot parse are reduced to their digits,
    so an already-normalized wa_id passes through unchanged.
    """
    if not phone:
        return ""

    phone = phone.strip()
    if phone.startswith("00"):
        phone = "+" + phone[2:]

    try:
        region = None if phone.startswith("+") else default_region
        parsed = phonenumbers.parse(phone, region)
        if phonenumbers.is_possible_number(parsed):
            return phonenumbers.format_number(parsed, PhoneNumberFormat.E164).lstrip("+")
    except NumberParseException as e:
        logger.debug(f"Falling back to digits for unparseable phone: {e}")

    return re.sub(r"\D", "", phone)


def is_valid_whatsapp_number(phone: Optional[str], default_region: Optional[str] = None) -> bool:
    """True when the number parses to a valid international number."""
    if not phone:
        return False
    candidate = phone.strip()
    if not candidate.startswith("+") and default_region is None:
        candidate = "+" + re.sub(r"\D", "", candidate)
    try:
        return phonenumbers.is_valid_number(phonenumbers.parse(candidate, default_region))
    except NumberParseException:
        return False
