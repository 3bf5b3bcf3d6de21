"""Package data: the default model pricing table (model-pricing.json)."""
