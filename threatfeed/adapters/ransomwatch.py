from typing import Dict, List

from ..errors import FormatError
from ..utils.http import Http
from . import feed

RANSOMWATCH_URL = "https://raw.githubusercontent.com/joshhighet/ransomwatch/main/posts.json"


@feed("ransomwatch")
def fetch(http: Http, limit: int = 1000) -> List[Dict]:
    """Leak-site posts; the feed is oldest-first so the tail is kept."""
    data = http.get_json(RANSOMWATCH_URL)
    if not isinstance(data, list):
        raise FormatError("ransomwatch: expected a list of posts")
    posts = [p for p in data if isinstance(p, dict)]
    return posts[-limit:] if limit else []
