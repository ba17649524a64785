"""OpenAI-backed implementations of the advice and receipt providers."""

from .openai_advice import OpenAIAdviceProvider
from .openai_receipt import OpenAIReceiptProvider

__all__ = ["OpenAIAdviceProvider", "OpenAIReceiptProvider"]
