"""
ESP integration layer — provider adapters, credential storage, OAuth state,
connection status and webhook dispatch for email service providers.
"""
