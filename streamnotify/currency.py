"""Currency parsing and formatting helpers."""

import math
import re
from dataclasses import dataclass
from typing import Optional, Union


class CurrencyParseError(ValueError):
    """Raised when a paid-message amount cannot be understood."""


class CurrencyFormatError(ValueError):
    """Raised when an amount is invalid for its currency."""


# Currencies that have no minor unit
ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "VND"}

# Platform units that are not fiat money
PLATFORM_UNITS = {"coins", "bits", "diamonds"}

# Symbol prefixes, checked in order ($ last since several currencies share it)
SYMBOL_CURRENCIES = [
    ("R$", "BRL"),
    ("NT$", "TWD"),
    ("₺", "TRY"),
    ("₹", "INR"),
    ("€", "EUR"),
    ("£", "GBP"),
    ("¥", "JPY"),
    ("₩", "KRW"),
    ("₽", "RUB"),
    ("฿", "THB"),
    ("₱", "PHP"),
    ("₦", "NGN"),
    ("₴", "UAH"),
    ("₪", "ILS"),
    ("₫", "VND"),
    ("৳", "BDT"),
    ("₨", "PKR"),
    ("$", "USD"),
]

# Spoken names (singular, plural) for text-to-speech
SPOKEN_CURRENCIES = {
    "USD": ("dollar", "dollars"),
    "CAD": ("Canadian dollar", "Canadian dollars"),
    "AUD": ("Australian dollar", "Australian dollars"),
    "EUR": ("euro", "euros"),
    "GBP": ("pound", "pounds"),
    "JPY": ("yen", "yen"),
    "KRW": ("won", "won"),
    "INR": ("rupee", "rupees"),
    "TRY": ("lira", "lira"),
    "BRL": ("real", "reais"),
    "RUB": ("ruble", "rubles"),
    "coins": ("coin", "coins"),
    "bits": ("bit", "bits"),
}

_NUMBER = r"[0-9][0-9,\.]*"
_CODE_SPACE = re.compile(rf"^([A-Za-z]{{3}})\s+({_NUMBER})$")
_CODE_SYMBOL = re.compile(rf"^([A-Za-z]{{3}})\$({_NUMBER})$")
_NUMBER_CODE = re.compile(rf"^({_NUMBER})\s+([A-Za-z]{{3}})$")
_BARE_NUMBER = re.compile(rf"^({_NUMBER})$")


@dataclass
class ParsedAmount:
    """A parsed monetary amount."""

    amount: float
    currency: str


def _parse_number(text: str, currency: str) -> float:
    """Parse "1,234.56" or "1.234,56" style numbers."""
    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        if re.search(r",[0-9]{1,2}$", text) and currency not in ZERO_DECIMAL_CURRENCIES:
            text = text.replace(",", ".")
        else:
            text = text.replace(",", "")
    elif text.count(".") > 1:
        text = text.replace(".", "")

    if not re.fullmatch(r"[0-9]+(\.[0-9]{1,2})?", text):
        raise CurrencyParseError(f"Unrecognised amount: {text}")
    return float(text)


def validate_amount(amount: float, currency: str) -> float:
    """Check an amount is finite, non-negative and fits the currency.

    Raises:
        CurrencyFormatError: If the amount is not valid for the currency
    """
    if not isinstance(amount, (int, float)) or isinstance(amount, bool):
        raise CurrencyFormatError(f"Amount must be a number, got {amount!r}")
    if not math.isfinite(amount) or amount < 0:
        raise CurrencyFormatError(f"Amount must be finite and non-negative: {amount}")
    if currency.upper() in ZERO_DECIMAL_CURRENCIES and amount % 1 != 0:
        raise CurrencyFormatError(f"{currency} amounts cannot have decimals: {amount}")
    return amount


def parse_purchase_amount(
    value: Union[str, int, float, None],
    currency: Optional[str] = None,
) -> ParsedAmount:
    """Parse a paid-message amount such as "$10.00", "€5,50" or "TRY 219.99".

    Args:
        value: Display string or number from the platform
        currency: Currency code to use for numbers or bare numeric strings

    Returns:
        ParsedAmount with a float amount and ISO currency code

    Raises:
        CurrencyParseError: If the amount is missing, negative or unrecognised
    """
    if value is None or isinstance(value, bool):
        raise CurrencyParseError("Missing purchase amount")

    if isinstance(value, (int, float)):
        if not currency:
            raise CurrencyParseError("Numeric purchase amount without a currency")
        if not math.isfinite(value) or value < 0:
            raise CurrencyParseError(f"Invalid purchase amount: {value}")
        return ParsedAmount(float(value), currency.upper())

    text = str(value).strip()
    if not text:
        raise CurrencyParseError("Empty purchase amount")
    if text.startswith("-"):
        raise CurrencyParseError("Negative amount not allowed")

    match = _CODE_SPACE.match(text) or _CODE_SYMBOL.match(text)
    if match:
        code = match.group(1).upper()
        return ParsedAmount(_parse_number(match.group(2), code), code)

    match = _NUMBER_CODE.match(text)
    if match:
        code = match.group(2).upper()
        return ParsedAmount(_parse_number(match.group(1), code), code)

    for symbol, code in SYMBOL_CURRENCIES:
        if text.startswith(symbol):
            rest = text[len(symbol):].strip()
            if _BARE_NUMBER.match(rest):
                if symbol == "$" and currency:
                    code = currency.upper()
                return ParsedAmount(_parse_number(rest, code), code)
            break

    match = _BARE_NUMBER.match(text)
    if match and currency:
        code = currency.upper()
        return ParsedAmount(_parse_number(match.group(1), code), code)

    raise CurrencyParseError(f"Unrecognised purchase amount: {text}")


def is_platform_unit(currency: Optional[str]) -> bool:
    """True for virtual platform units (coins, bits) rather than money."""
    return bool(currency) and currency.lower() in PLATFORM_UNITS


def format_number(amount: float, currency: str) -> str:
    """Format an amount without trailing zeros for whole values."""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES or is_platform_unit(currency):
        return f"{int(round(amount)):,}"
    if float(amount).is_integer():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


def format_amount(amount: float, currency: str) -> str:
    """Format for display, e.g. "10 USD", "5.50 EUR", "500 coins".

    Raises:
        CurrencyFormatError: If the amount is not valid for the currency
    """
    validate_amount(amount, currency)
    return f"{format_number(amount, currency)} {currency}"


def spoken_amount(amount: float, currency: str) -> str:
    """Format for text-to-speech, e.g. "10 dollars", "1 dollar"."""
    validate_amount(amount, currency)
    number = format_number(amount, currency).replace(",", "")
    names = SPOKEN_CURRENCIES.get(currency) or SPOKEN_CURRENCIES.get(currency.upper())
    if names is None:
        return f"{number} {currency}"
    singular, plural = names
    return f"{number} {singular if amount == 1 else plural}"
