from typing import Dict, List

from ..errors import NetworkError
from ..utils.http import Http
from . import check_query_status, feed, flatten_numeric_keyed

THREATFOX_EXPORT_URL = "https://threatfox.abuse.ch/export/json/recent/"
THREATFOX_API_URL = "https://threatfox-api.abuse.ch/api/v1/"


@feed("threatfox")
def fetch(http: Http, days: int = 7, limit: int = 1000) -> List[Dict]:
    try:
        return flatten_numeric_keyed(http.get_json(THREATFOX_EXPORT_URL), limit)
    except NetworkError:
        payload = check_query_status(
            http.post_json(THREATFOX_API_URL, json_body={"query": "get_iocs", "days": days}), "threatfox"
        )
        data = payload.get("data") or []
        return [d for d in data if isinstance(d, dict)][:limit]
