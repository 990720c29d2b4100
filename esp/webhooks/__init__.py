"""
Inbound ESP webhooks, dispatched by provider and event family.
"""
