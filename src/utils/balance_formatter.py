"""Human-readable rendering of balances and refresh results."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from tokenpulse_client.models import Balance, Failure, ProviderResult, Success
from utils.logging_config import redact_secrets

PLACEHOLDER = "--"


def format_currency(amount: Decimal) -> str:
    quantized = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if quantized < 0 else ""
    return f"{sign}${abs(quantized):,.2f}"


def format_number(value: int | Decimal) -> str:
    return f"{value:,}"


def format_balance(balance: Balance | None) -> str:
    """Render e.g. ``$10.50 + 1,500 / 10,000 tokens``; ``--`` when empty."""
    if balance is None:
        return PLACEHOLDER
    parts: list[str] = []

    credits = balance.credits
    if credits is not None:
        if credits.remaining is not None:
            parts.append(format_currency(credits.remaining))
        elif credits.used is not None:
            parts.append(f"{format_currency(credits.used)} used")

    tokens = balance.tokens
    if tokens is not None and tokens.used is not None:
        total = f" / {format_number(tokens.total)}" if tokens.total is not None else ""
        parts.append(f"{format_number(tokens.used)}{total} tokens")

    return " + ".join(parts) if parts else PLACEHOLDER


def format_result(result: ProviderResult | None) -> str:
    if result is None:
        return PLACEHOLDER
    if isinstance(result, Success):
        return format_balance(result.snapshot.balance)
    if isinstance(result, Failure):
        return f"{result.kind.value}: {redact_secrets(result.message)}"
    return PLACEHOLDER
