import re
from typing import Dict, List

from ..errors import NetworkError
from ..utils.http import Http
from . import check_query_status, feed, text_lines

BAZAAR_EXPORT_URL = "https://bazaar.abuse.ch/export/txt/sha256/recent/"
BAZAAR_API_URL = "https://mb-api.abuse.ch/api/v1/"

SHA256 = re.compile(r"^[A-Fa-f0-9]{64}$")


@feed("malwarebazaar")
def fetch(http: Http, limit: int = 1000) -> List[Dict]:
    try:
        text = http.get_text(BAZAAR_EXPORT_URL)
    except NetworkError:
        payload = check_query_status(
            http.post_json(BAZAAR_API_URL, data={"query": "get_recent", "selector": "100"}), "malwarebazaar"
        )
        return [s for s in payload.get("data") or [] if isinstance(s, dict)][:limit]
    return [{"sha256_hash": line} for line in text_lines(text) if SHA256.match(line)][:limit]
