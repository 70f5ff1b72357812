"""User directory.

Account creation and login flows live elsewhere; the pipelines only need
display names and family membership. create_user exists for seeding and
tests.
"""

from hearth.db.records import USERS, USERS_BY_FAMILY, User
from hearth.db.store import Tx
from hearth.errors import InvalidRequestError


def create_user(tx: Tx, name: str, email: str, family_id: int) -> User:
    """Insert a user and index them under their family. Does not commit."""
    name = name.strip()
    if not name:
        raise InvalidRequestError(message="Name is required")
    user = User(
        id=tx.next_int_id(USERS),
        name=name,
        email=email.strip().lower(),
        family_id=family_id,
    )
    tx.write(USERS, user.id, user)
    tx.set_target_single_term(USERS_BY_FAMILY, user.id, family_id)
    return user


def get_user(tx: Tx, user_id: int) -> User | None:
    return tx.read(USERS, user_id)


def family_member_ids(tx: Tx, family_id: int) -> list[int]:
    """All user ids belonging to a family."""
    return tx.read_term_targets(USERS_BY_FAMILY, family_id)

