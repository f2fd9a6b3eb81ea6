"""Static featured templates served while the database is unreachable."""

_SYSTEM_OWNER = {"id": "system", "username": "system", "displayName": "TemplateDatabase System"}

FEATURED_FALLBACK = [
    {
        "id": "fallback-code-template",
        "slug": "fallback-open-source-code-template",
        "title": "Open Source Code Template Starter",
        "summary": "Default code template shown while the main featured data cannot be reached.",
        "type": "CODE",
        "tags": ["starter", "fallback", "opensource"],
        "featured": True,
        "owner": _SYSTEM_OWNER,
    },
    {
        "id": "fallback-idea-template",
        "slug": "fallback-global-product-idea",
        "title": "Global Product Idea Template",
        "summary": "Universal idea template that keeps the homepage responsive.",
        "type": "IDEA",
        "tags": ["idea", "product", "global"],
        "featured": True,
        "owner": _SYSTEM_OWNER,
    },
]


def fallback_detail(slug: str) -> dict | None:
    item = next((t for t in FEATURED_FALLBACK if t["slug"] == slug), None)
    if item is None:
        return None
    return {
        **item,
        "owner": dict(item["owner"]),
        "ownerId": item["owner"]["id"],
        "content": (
            f"{item['title']}\n\n{item['summary']}\n\n"
            "Status: fallback mode is active because the database is not available yet."
        ),
    }
