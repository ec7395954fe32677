from typing import Dict, List

from ..errors import FormatError
from ..utils.http import Http
from . import feed, text_lines

IPSUM_URL = "https://raw.githubusercontent.com/stamparm/ipsum/master/ipsum.txt"


@feed("ipsum")
def fetch(http: Http, min_hits: int = 1, limit: int = 1000) -> List[Dict]:
    records: List[Dict] = []
    for line in text_lines(http.get_text(IPSUM_URL)):
        parts = line.split()
        if len(parts) != 2 or not parts[1].isdigit():
            raise FormatError(f"ipsum: unexpected line {line[:60]!r}")
        hits = int(parts[1])
        if hits < min_hits:
            continue
        records.append({"ip": parts[0], "hits": hits})
        if len(records) >= limit:
            break
    return records
