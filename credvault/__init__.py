"""
CredVault Credentials Manager

A local store for email/password credentials and their TOTP secrets, with
duplicate-aware import, export and a user-controlled account order.

NOTICE:
Data is stored locally and unencrypted. Keep the data file on a device you
own and protect it with your operating system's account security.
"""
