"""Credential Vault Meta information.
   Credential Vault keeps per-user third-party API secrets encrypted at rest.
"""
__title__ = 'credential_vault'
__description__ = (
   'Credential Vault keeps per-user third-party API secrets '
   'encrypted at rest, with quarantine of corrupted records.'
)
__version__ = '0.3.0'
__license__ = 'Apache-2.0'
