from typing import Dict, List

from ..errors import FormatError
from ..utils.http import Http
from . import feed

SSLBL_URL = "https://sslbl.abuse.ch/blacklist/sslipblacklist.json"


@feed("sslbl")
def fetch(http: Http, limit: int = 1000) -> List[Dict]:
    data = http.get_json(SSLBL_URL)
    if not isinstance(data, list):
        raise FormatError("sslbl: expected a list of blacklisted endpoints")
    return [entry for entry in data if isinstance(entry, dict)][:limit]
