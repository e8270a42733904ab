"""ctxplan - budgeted context planning for LLM document generation."""

__version__ = "0.1.0"
