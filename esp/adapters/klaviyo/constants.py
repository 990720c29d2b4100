KLAVIYO_BASE = "https://a.klaviyo.com/api"
KLAVIYO_REVISION = "2024-10-15"
JSON_API = "application/vnd.api+json"


def klaviyo_headers(api_key: str, *, json_body: bool = False) -> dict:
    headers = {
        "Authorization": f"Klaviyo-API-Key {api_key}",
        "revision": KLAVIYO_REVISION,
        "Accept": JSON_API,
    }
    if json_body:
        headers["Content-Type"] = JSON_API
    return headers
