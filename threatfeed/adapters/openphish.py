from typing import Dict, List

from ..utils.http import Http
from . import feed, text_lines

OPENPHISH_URL = "https://openphish.com/feed.txt"


@feed("openphish")
def fetch(http: Http, limit: int = 1000) -> List[Dict]:
    return [{"url": line} for line in text_lines(http.get_text(OPENPHISH_URL))][:limit]
