from community_chat.core.data_access import DataAccess, eq, in_


async def get_username(data: DataAccess, id: str) -> str | None:
    """Get a user username using there id"""

    rows = await data.query(
        "profiles", [eq("id", str(id))], columns="username", limit=1
    )
    if not rows:
        return None
    return rows[0]["username"]


async def get_profiles(
    data: DataAccess, ids, columns: str = "id, username, avatar_url"
) -> dict[str, dict]:
    """Fetch several profiles in one round trip, keyed by id."""

    ids = sorted({str(i) for i in ids})
    if not ids:
        return {}
    rows = await data.query("profiles", [in_("id", ids)], columns=columns)
    return {str(row["id"]): row for row in rows}
