from .static_token_identity_provider import StaticTokenIdentityProvider

__all__ = ["StaticTokenIdentityProvider"]
