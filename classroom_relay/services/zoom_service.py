# classroom_relay/services/zoom_service.py

import aiohttp

from ..oauth_token import get_zoom_oauth_token


class ZoomAPIError(Exception):
    pass


async def get_meeting_details(meeting_id: str) -> dict:
    token = await get_zoom_oauth_token()
    url = f"https://api.zoom.us/v2/meetings/{meeting_id}"
    headers = {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json"
    }
    async with aiohttp.ClientSession() as session:
        async with session.get(url, headers=headers) as resp:
            if resp.status >= 400:
                raise ZoomAPIError(f"Zoom API error: {resp.status} {await resp.text()}")
            return await resp.json()
