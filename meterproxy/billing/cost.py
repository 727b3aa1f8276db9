# Cost per 1M tokens (USD)
COST_RATES = {
    "claude-opus-4-6": {"input": 15.0, "output": 75.0},
    "claude-sonnet-4-5-20250929": {"input": 3.0, "output": 15.0},
}
DEFAULT_RATE = {"input": 3.0, "output": 15.0}

# Requests naming a model with one of these prefixes are rewritten while downgraded
PREMIUM_MODEL_PREFIXES = ("claude-opus",)


def compute_cost(model: str, input_tokens: int, output_tokens: int, rates: dict | None = None) -> float:
    rate = (rates if rates is not None else COST_RATES).get(model, DEFAULT_RATE)
    input_cost = (input_tokens / 1_000_000) * rate["input"]
    output_cost = (output_tokens / 1_000_000) * rate["output"]
    return input_cost + output_cost


def is_premium_model(model: str | None) -> bool:
    if not model:
        return False
    return any(model.startswith(prefix) for prefix in PREMIUM_MODEL_PREFIXES)
