"""Tenant integrations, credential decryption and resolution."""
