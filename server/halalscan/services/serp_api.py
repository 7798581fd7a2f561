import asyncio
from typing import List, Optional

from serpapi import GoogleSearch

from halalscan.core.config import settings


def _google_search_sync(query: str, api_key: str, location: str) -> dict:
    search = GoogleSearch({
        "q": query,
        "location": location,
        "hl": "en",
        "api_key": api_key
    })
    return search.get_dict()


async def google_search(query: str, api_key: Optional[str] = None, location: Optional[str] = None) -> dict:
    # GoogleSearch blocks, so it runs on the default executor
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None,
        _google_search_sync,
        query,
        api_key or settings.SERPAI_KEY,
        location or settings.LOCATION,
    )


def organic_results(result: dict) -> List[dict]:
    return result.get("organic_results") or []
