"""Microsoft Graph authentication"""
from auth.microsoft_auth import GraphAuthError, MicrosoftAuth

__all__ = ['GraphAuthError', 'MicrosoftAuth']
