from typing import Dict, List

from ..errors import NetworkError
from ..utils.http import Http
from . import check_query_status, feed, flatten_numeric_keyed

URLHAUS_DUMP_URL = "https://urlhaus.abuse.ch/downloads/json_recent/"
URLHAUS_API_URL = "https://urlhaus-api.abuse.ch/v1/urls/recent/"


@feed("urlhaus")
def fetch(http: Http, limit: int = 1000) -> List[Dict]:
    try:
        return flatten_numeric_keyed(http.get_json(URLHAUS_DUMP_URL), limit)
    except NetworkError:
        # dump host unreachable: the query API serves the same records
        payload = check_query_status(http.post_json(URLHAUS_API_URL, data={"selector": "100"}), "urlhaus")
        urls = payload.get("urls") or []
        return [u for u in urls if isinstance(u, dict)][:limit]
