import csv
import io
from typing import Dict, List

from ..errors import FormatError
from ..utils.http import Http
from . import feed

PHISHTANK_URL = "https://data.phishtank.com/data/online-valid.csv"
REQUIRED_COLUMNS = {"phish_id", "url"}


@feed("phishtank")
def fetch(http: Http, limit: int = 1000) -> List[Dict]:
    reader = csv.DictReader(io.StringIO(http.get_text(PHISHTANK_URL)))
    if reader.fieldnames is None:
        return []
    missing = REQUIRED_COLUMNS - set(reader.fieldnames)
    if missing:
        raise FormatError(f"phishtank: CSV header lacks {sorted(missing)}")
    rows: List[Dict] = []
    for row in reader:
        rows.append(dict(row))
        if len(rows) >= limit:
            break
    return rows
