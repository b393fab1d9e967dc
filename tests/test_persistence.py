import asyncio

import aiosqlite
import pytest

from filemailer.credentials import generate_token
from filemailer.errors import InternalInconsistencyError
from filemailer.persistence import Persistence, utc_now_iso


async def _user(p, telegram_id=1001, email="old@example.com", username="alice"):
    user_id, _ = await p.register_chat_user(telegram_id, username, email, generate_token())
    return user_id


async def _request(p, user_id, new_email="new@example.com", old_email="old@example.com"):
    return await p.insert_change_request(
        user_id=user_id, requester_chat_id=1001, old_email=old_email, new_email=new_email
    )


@pytest.mark.asyncio
async def test_init_db_is_idempotent(tmp_path):
    p = Persistence(str(tmp_path / "fm.db"))
    await p.init_db()
    await p.init_db()
    assert await p.list_users() == []


@pytest.mark.asyncio
async def test_register_and_lookup(persistence):
    token = generate_token()
    user_id, created = await persistence.register_chat_user(7, "carol", "carol@example.com", token)
    assert created is True

    user = await persistence.get_user(user_id)
    assert user["email"] == "carol@example.com"
    assert user["api_key"] == token
    assert user["username"] == "carol"

    by_key = await persistence.get_user_by_api_key(token)
    assert by_key["id"] == user_id

    chat = await persistence.get_chat_user(7)
    assert chat["user_id"] == user_id
    assert chat["api_key"] == token

    listed = await persistence.list_users()
    assert "api_key" not in listed[0]
    assert listed[0]["telegram_id"] == 7


@pytest.mark.asyncio
async def test_change_request_lifecycle_reject(persistence):
    user_id = await _user(persistence)
    row = await _request(persistence, user_id)
    assert row["status"] == "pending"
    assert row["processed_at"] is None

    assert await persistence.reject_change_request(row["id"], utc_now_iso()) is True
    stored = await persistence.get_change_request(row["id"])
    assert stored["status"] == "rejected"
    assert stored["processed_at"] is not None
    assert (await persistence.get_user(user_id))["email"] == "old@example.com"

    # Terminal: a second decision does nothing
    assert await persistence.reject_change_request(row["id"], utc_now_iso()) is False
    assert await persistence.approve_change_request(row["id"], utc_now_iso()) is False
    again = await persistence.get_change_request(row["id"])
    assert again["status"] == "rejected"
    assert again["processed_at"] == stored["processed_at"]


@pytest.mark.asyncio
async def test_approve_updates_user_email(persistence):
    user_id = await _user(persistence)
    row = await _request(persistence, user_id)

    assert await persistence.approve_change_request(row["id"], utc_now_iso()) is True
    assert (await persistence.get_user(user_id))["email"] == "new@example.com"
    stored = await persistence.get_change_request(row["id"])
    assert stored["status"] == "approved"
    assert stored["old_email"] == "old@example.com"


@pytest.mark.asyncio
async def test_decisions_on_unknown_id_return_false(persistence):
    assert await persistence.approve_change_request(404, utc_now_iso()) is False
    assert await persistence.reject_change_request(404, utc_now_iso()) is False
    assert await persistence.get_change_request(404) is None


@pytest.mark.asyncio
async def test_failed_reject_releases_write_lock(tmp_path):
    p = Persistence(str(tmp_path / "fm.db"))
    with pytest.raises(aiosqlite.OperationalError):
        await p.reject_change_request(1, utc_now_iso())

    await p.init_db()
    user_id = await _user(p)
    row = await _request(p, user_id)
    assert await p.reject_change_request(row["id"], utc_now_iso()) is True


@pytest.mark.asyncio
async def test_approve_rolls_back_when_user_is_missing(persistence):
    row = await _request(persistence, user_id=999)

    with pytest.raises(InternalInconsistencyError) as excinfo:
        await persistence.approve_change_request(row["id"], utc_now_iso())

    assert excinfo.value.fields["stage"] == "update_user"
    stored = await persistence.get_change_request(row["id"])
    assert stored["status"] == "pending"
    assert stored["processed_at"] is None


@pytest.mark.asyncio
async def test_concurrent_decisions_have_one_winner(persistence):
    user_id = await _user(persistence)
    row = await _request(persistence, user_id)

    results = await asyncio.gather(
        persistence.approve_change_request(row["id"], utc_now_iso()),
        persistence.reject_change_request(row["id"], utc_now_iso()),
    )

    assert sorted(results) == [False, True]
    stored = await persistence.get_change_request(row["id"])
    email = (await persistence.get_user(user_id))["email"]
    if stored["status"] == "approved":
        assert email == "new@example.com"
    else:
        assert stored["status"] == "rejected"
        assert email == "old@example.com"


@pytest.mark.asyncio
async def test_list_change_requests_order_and_filter(persistence):
    user_id = await _user(persistence)
    first = await _request(persistence, user_id, "one@example.com")
    second = await _request(persistence, user_id, "two@example.com")
    third = await _request(persistence, user_id, "three@example.com")
    await persistence.reject_change_request(second["id"], utc_now_iso())

    pending = await persistence.list_change_requests()
    assert [r["id"] for r in pending] == [third["id"], first["id"]]

    everything = await persistence.list_change_requests(None)
    assert [r["id"] for r in everything] == [third["id"], second["id"], first["id"]]
