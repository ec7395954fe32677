from typing import Dict, List

from ..utils.http import Http
from . import feed, text_lines

BLOCKLIST_URL = "https://api.blocklist.de/getlast.php"


@feed("blocklist_de")
def fetch(http: Http, seconds: int = 86400, limit: int = 1000) -> List[Dict]:
    text = http.get_text(BLOCKLIST_URL, params={"time": seconds})
    return [{"ip": line} for line in text_lines(text)][:limit]
