# test_users_db_properties.py
#
# Property-based tests for the UsersDatabase library using Hypothesis.

# Imports
import pytest

# Third-Party Imports
from hypothesis import given, strategies as st, settings, HealthCheck

# Local Imports
from hybrid_users.DB.Users_DB import UsersDatabase, RecordNotFoundError
from hybrid_users.models import User

########################################################################################################################
#
# Hypothesis Setup:

settings.register_profile(
    "db_friendly",
    deadline=1500,
    suppress_health_check=[
        HealthCheck.too_slow,
        HealthCheck.function_scoped_fixture
    ]
)
settings.load_profile("db_friendly")


# --- Hypothesis Strategies ---

st_text = st.text(alphabet=st.characters(blacklist_categories=("Cs", "Cc")), max_size=40)
st_ids = st.sampled_from(["1", "2", "3", "local_a", "local_b"])


@st.composite
def st_user(draw, user_id=None):
    return User(
        id=user_id if user_id is not None else draw(st_ids),
        first_name=draw(st_text),
        last_name=draw(st_text),
        email=draw(st_text),
        age=draw(st.integers(min_value=0, max_value=150)),
        user_name=draw(st_text),
        position_title=draw(st_text),
        image=draw(st_text),
    )


st_operation = st.tuples(
    st.sampled_from(["insert", "update", "delete", "server_update", "server_insert", "mark_synced", "purge"]),
    st_user(),
)


def fresh_db() -> UsersDatabase:
    return UsersDatabase(":memory:", "hypothesis_client")


def apply_operation(db: UsersDatabase, kind: str, user: User):
    """Mirrors how the repository and the sync engine drive the store."""
    current = db.get_user_by_id(user.id)
    if kind == "insert":
        db.insert_user(user.model_copy(update={"pending_sync": True, "pending_delete": False}))
    elif kind == "update":
        if current is None:
            with pytest.raises(RecordNotFoundError):
                db.update_user(user.model_copy(update={"pending_sync": True}))
        else:
            db.update_user(user.model_copy(update={"pending_sync": True, "pending_delete": current.pending_delete}))
    elif kind == "delete":
        if current is not None:
            db.update_user(current.model_copy(update={"pending_sync": True, "pending_delete": True}))
    elif kind == "server_update":
        db.bulk_update_users([user])
    elif kind == "server_insert":
        db.bulk_insert_users([user])
    elif kind == "mark_synced":
        if current is not None:
            db.mark_synced(current)
    elif kind == "purge":
        db.physical_delete_user(user)


def assert_store_invariants(db: UsersDatabase):
    rows = db.execute_query("SELECT * FROM users").fetchall()
    for row in rows:
        assert not (row["pending_delete"] and not row["pending_sync"]), f"tombstone {row['id']} is not pending_sync"
    active_ids = [u.id for u in db.get_active_users()]
    assert active_ids == sorted(row["id"] for row in rows if not row["pending_delete"])
    assert all(not u.pending_delete for u in db.get_users_to_sync())
    assert all(u.pending_sync for u in db.get_users_to_sync())
    assert {u.id for u in db.get_users_to_delete()} == {row["id"] for row in rows if row["pending_delete"]}


# --- Test Classes ---

class TestStoreInvariants:

    @given(operations=st.lists(st_operation, max_size=25))
    def test_invariants_hold_after_any_operation_sequence(self, operations):
        db = fresh_db()
        try:
            for kind, user in operations:
                apply_operation(db, kind, user)
                assert_store_invariants(db)
        finally:
            db.close_connection()

    @given(local=st_user(user_id="7"), server=st_user(user_id="7"))
    def test_server_data_never_overwrites_dirty_row(self, local, server):
        db = fresh_db()
        try:
            dirty = local.model_copy(update={"pending_sync": True})
            db.insert_user(dirty)
            db.bulk_update_users([server])
            db.bulk_insert_users([server])
            stored = db.get_user_by_id("7")
            assert stored.same_business_data(dirty)
            assert stored.pending_sync is True
        finally:
            db.close_connection()

    @given(user=st_user())
    def test_insert_roundtrip_preserves_business_data(self, user):
        db = fresh_db()
        try:
            db.insert_user(user.model_copy(update={"pending_sync": True}))
            stored = db.get_user_by_id(user.id)
            assert stored.business_data() == user.business_data()
            assert stored.pending_sync is True
            assert stored.pending_delete is False
        finally:
            db.close_connection()

    @given(users=st.lists(st_user(), max_size=10))
    def test_logically_deleted_users_never_appear_in_active_view(self, users):
        db = fresh_db()
        try:
            for user in users:
                db.insert_user(user.model_copy(update={"pending_sync": True, "pending_delete": True}))
            assert db.get_active_users() == []
            assert db.get_users_to_sync() == []
        finally:
            db.close_connection()

#
# End of test_users_db_properties.py
########################################################################################################################
