from __future__ import annotations

from src.app.core.exceptions import InvalidParameter
from src.app.core.relations import Relation
from src.app.models import Post, User

USERS = Relation.from_table(User.__table__)
POSTS = Relation.from_table(Post.__table__)

# MVP: only these relations may appear in generated SQL - for security
ALLOWED_RELATIONS: dict[str, Relation] = {
    USERS.name: USERS,
    POSTS.name: POSTS,
}


def get_relation(name: str) -> Relation:
    name = (name or "").strip()
    relation = ALLOWED_RELATIONS.get(name)
    if relation is None:
        raise InvalidParameter(f"Relation {name!r} is not allowed")
    return relation
