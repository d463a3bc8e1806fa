"""
harbor-resource packages a helm chart, optionally signs it, uploads it to a
Harbor chart repository and waits until the registry has indexed it.
"""

__all__ = [
    "chart",
    "exceptions",
    "helm",
    "pipeline",
    "registry",
    "request",
    "signing",
    "version",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
