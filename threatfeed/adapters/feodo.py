from typing import Dict, List

from ..errors import FormatError
from ..utils.http import Http
from . import feed

FEODO_URL = "https://feodotracker.abuse.ch/downloads/ipblocklist_recommended.json"


@feed("feodo")
def fetch(http: Http, limit: int = 1000) -> List[Dict]:
    data = http.get_json(FEODO_URL)
    # served either as a bare array or wrapped as {"value": [...]}
    if isinstance(data, dict):
        data = data.get("value", data.get("data"))
    if not isinstance(data, list):
        raise FormatError("feodo: expected a list of C2 entries")
    return [entry for entry in data if isinstance(entry, dict)][:limit]
