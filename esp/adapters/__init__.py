"""
Provider adapters.  Each subpackage exposes ``build_<provider>_adapter()``.
"""
