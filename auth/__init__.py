"""
auth — request principals for the ESP API.

Provides:
  • ``Principal`` (user id, role, accessible account keys)
  • signed bearer-token creation & verification
  • ``get_current_principal`` / ``require_role`` FastAPI dependencies
"""
