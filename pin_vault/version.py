"""PIN Vault Meta information.
   PIN Vault keeps third-party API secrets encrypted at rest behind a PIN.
"""
__title__ = 'pin_vault'
__description__ = (
   'PIN Vault keeps third-party API secrets encrypted at rest '
   'behind a PIN-gated, time-boxed session.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
