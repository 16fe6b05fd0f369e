"""
Token pricing per model
"""

# USD per 1K tokens: (input, output)
MODEL_PRICES = {
    'claude-3-7-sonnet-20250219': (0.003, 0.015),
    'claude-sonnet-4-20250514': (0.003, 0.015),
    'claude-3-5-haiku-20241022': (0.0008, 0.004),
    'gpt-4.1-mini-2025-04-14': (0.0004, 0.0016),
    'gpt-4.1-2025-04-14': (0.002, 0.008),
    'Moondream-vl-Detect': (0.0, 0.0),
}


def compute_cost(model, input_tokens, output_tokens):
    """Estimated USD cost of one call; unknown models cost nothing"""
    input_price, output_price = MODEL_PRICES.get(model, (0.0, 0.0))
    cost = (
        ((input_tokens or 0) / 1000) * input_price +
        ((output_tokens or 0) / 1000) * output_price
    )
    return round(cost, 6)
