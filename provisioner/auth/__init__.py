"""Authentication adapters for the provisioner."""

from .token import SubscriberTokenVerifier

__all__ = ["SubscriberTokenVerifier"]
