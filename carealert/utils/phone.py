import re
from typing import Optional

# Obvious placeholder and test numbers that must never be texted
TEST_NUMBER_PATTERNS = [
    re.compile(r"^\+?1234567?890$"),        # sequential digits
    re.compile(r"^\+?(\d)\1{9,}$"),         # repeated digits like 1111111111
    re.compile(r"X{3,}", re.IGNORECASE),    # templates like 555-XXX-XXXX
    re.compile(r"^\+?555"),                 # reserved test prefix
]

MIN_DIGITS = 10
MAX_DIGITS = 15

def clean_phone_number(phone_number: Optional[str]) -> str:
    """Keep a leading + and the digits"""
    if not phone_number:
        return ""
    phone_number = phone_number.strip()
    digits = "".join(c for c in phone_number if c.isdigit())
    return "+" + digits if phone_number.startswith("+") else digits

def is_valid_phone_number(phone_number: Optional[str]) -> bool:
    if not phone_number:
        return False

    # Placeholders are checked on the raw value; cleaning would strip the X's
    if TEST_NUMBER_PATTERNS[2].search(phone_number):
        return False

    cleaned = clean_phone_number(phone_number)
    digit_count = len(cleaned.lstrip("+"))
    if digit_count < MIN_DIGITS or digit_count > MAX_DIGITS:
        return False

    return not any(pattern.search(cleaned) for pattern in TEST_NUMBER_PATTERNS)

def format_phone_number(phone_number: Optional[str]) -> Optional[str]:
    """Format a phone number to E.164 for SMS delivery"""
    cleaned = clean_phone_number(phone_number)
    if not cleaned:
        return None

    # US numbers without a country code
    if len(cleaned) == 10 and not cleaned.startswith("+") and not cleaned.startswith("1"):
        return f"+1{cleaned}"

    if not cleaned.startswith("+"):
        return f"+{cleaned}"

    return cleaned
