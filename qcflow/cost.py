
from __future__ import annotations
from typing import Dict

def estimate_cost(input_tokens: int, output_tokens: int, price_in: float, price_out: float) -> float:
    return (input_tokens/1000.0)*price_in + (output_tokens/1000.0)*price_out

def usage_delta(before: Dict[str, int], after: Dict[str, int], price_in: float, price_out: float) -> Dict[str, float]:
    """Token usage between two ``LLMProvider.total_usage()`` snapshots, priced."""
    in_t = after["input_tokens"] - before["input_tokens"]
    out_t = after["output_tokens"] - before["output_tokens"]
    return {
        "input_tokens": in_t,
        "output_tokens": out_t,
        "total_tokens": in_t + out_t,
        "estimated_cost": round(estimate_cost(in_t, out_t, price_in, price_out), 6),
    }

def sum_usage(stages: Dict[str, Dict[str, float]]) -> Dict[str, float]:
    total = {"input_tokens": 0, "output_tokens": 0, "total_tokens": 0, "estimated_cost": 0.0}
    for usage in stages.values():
        for k in total:
            total[k] += usage.get(k, 0)
    total["estimated_cost"] = round(total["estimated_cost"], 6)
    return total
