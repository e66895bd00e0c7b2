"""VaultLock Meta information.
   VaultLock derives, wraps and rotates the master credential of
   a local encrypted multi-vault store.
"""
__title__ = 'vaultlock'
__description__ = (
   'Master-password key derivation, vault key wrapping and '
   'multi-vault re-keying for local encrypted stores.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2026 VaultLock Authors'
__author__ = 'VaultLock Authors'
__author_email__ = 'dev@vaultlock.dev'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/vaultlock/vaultlock'
