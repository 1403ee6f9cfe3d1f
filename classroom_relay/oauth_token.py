import aiohttp

from . import config


class ZoomAuthError(Exception):
    pass


async def get_zoom_oauth_token() -> str:
    """
    Fetches an OAuth token using Zoom account-level credentials
    """
    if not (config.ZOOM_CLIENT_ID and config.ZOOM_CLIENT_SECRET and config.ZOOM_ACCOUNT_ID):
        raise ZoomAuthError(
            "Missing Zoom credentials: make sure client_id_Zoom, secret_zoom, and ZOOM_ACCOUNT_ID are set in your .env"
        )

    url = "https://zoom.us/oauth/token"
    params = {
        "grant_type": "account_credentials",
        "account_id": config.ZOOM_ACCOUNT_ID
    }
    auth = aiohttp.BasicAuth(login=config.ZOOM_CLIENT_ID, password=config.ZOOM_CLIENT_SECRET)

    async with aiohttp.ClientSession() as session:
        async with session.post(url, params=params, auth=auth) as resp:
            text = await resp.text()
            if resp.status != 200:
                raise ZoomAuthError(f"Zoom OAuth failed: {resp.status} {text}")
            data = await resp.json()
            return data.get("access_token")
