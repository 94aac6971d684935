"""Global token usage tracker for Claude API calls."""

from __future__ import annotations

import threading


class TokenTracker:
    """Singleton tracking cumulative token usage, overall and per model."""

    _instance: TokenTracker | None = None
    _lock = threading.Lock()

    def __new__(cls) -> TokenTracker:
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance.reset()
            return cls._instance

    def reset(self) -> None:
        self.input_tokens: int = 0
        self.output_tokens: int = 0
        self.api_calls: int = 0
        self.by_model: dict[str, int] = {}

    def record(self, usage, model: str = "") -> None:
        """Record token usage from a Claude response.usage (or final stream message) object."""
        if usage is None:
            return
        used_in = getattr(usage, "input_tokens", 0) or 0
        used_out = getattr(usage, "output_tokens", 0) or 0
        self.input_tokens += used_in
        self.output_tokens += used_out
        self.api_calls += 1
        if model:
            self.by_model[model] = self.by_model.get(model, 0) + used_in + used_out

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def summary(self) -> str:
        """One-line footer; per-model totals follow when more than one model was used."""
        line = (
            f"API: {self.api_calls} | "
            f"In: {self._fmt(self.input_tokens)} | "
            f"Out: {self._fmt(self.output_tokens)} | "
            f"Total: {self._fmt(self.total_tokens)}"
        )
        if len(self.by_model) > 1:
            per_model = ", ".join(
                f"{model} {self._fmt(tokens)}"
                for model, tokens in sorted(self.by_model.items(), key=lambda kv: -kv[1])
            )
            line += f" ({per_model})"
        return line

    @staticmethod
    def _fmt(n: int) -> str:
        if n >= 1_000_000:
            return f"{n / 1_000_000:.1f}M"
        if n >= 1_000:
            return f"{n / 1_000:.1f}K"
        return str(n)
