"""
Cost estimation for provider usage.

Produces the fixed-point cost strings stored on usage disclosures.
"""

from decimal import Decimal, ROUND_UP

from .registry import ProviderConfig
from .token_counter import TokenUsage

COST_QUANTUM = Decimal("0.000001")


def calculate_cost(provider: ProviderConfig, usage: TokenUsage) -> Decimal:
    """Calculate the cost of a provider call with conservative rounding.

    Args:
        provider: Provider whose per-token price applies
        usage: Token usage data

    Returns:
        Total cost rounded UP to six decimal places
    """
    total_cost = Decimal(usage.total_tokens) * provider.cost_per_token
    return total_cost.quantize(COST_QUANTUM, rounding=ROUND_UP)


def format_cost(amount: Decimal) -> str:
    """Render a cost as a fixed-point decimal string (no exponent)."""
    return format(amount.quantize(COST_QUANTUM, rounding=ROUND_UP), "f")
