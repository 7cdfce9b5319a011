"""
Storage provider implementations and their registration.
"""

from filestore.implementations.register import register_providers

__all__ = ["register_providers"]
