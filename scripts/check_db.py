import json

from dotenv import load_dotenv

from templatedb.db.env import mask_url, resolve_database_configs
from templatedb.db.postgres import health_check


load_dotenv(override=False)
configs = resolve_database_configs()
print(json.dumps({
    "candidates": [
        {"source": c.source, "url": mask_url(c.url), "provider": c.provider, "network": c.network}
        for c in configs
    ],
}, indent=2))
print(json.dumps({"health": health_check()}))
