"""
tests/test_posting.py
"""
from __future__ import annotations

from typing import Any

from conftest import CSRF, act_as, make_user
from skyblog.blog import find_post, get_db, list_posts


def _new(client, **payload: Any):
    data = {"title": "Hello", "content": "first **post**", "category": "Travel", **payload}
    return client.post("/new", data={**data, "csrf": CSRF})


def _only_post():
    rows = list_posts(db=get_db())
    assert len(rows) == 1
    return rows[0]


# ───────────────────────── create ─────────────────────────────────────
def test_create_post_round_trip(client):
    make_user()
    act_as(client)

    rv = _new(client)
    assert rv.status_code == 302

    p = _only_post()
    assert (p["title"], p["body"], p["category"]) == ("Hello", "first **post**", "Travel")
    assert p["creator_user_id"] == "alice"
    assert p["creator_name"] == "Alice A"
    assert p["date_created"] == "10/18/2026, 3:04:05 PM"


def test_new_ids_are_unique_and_increasing(client):
    make_user()
    act_as(client)
    for n in range(3):
        _new(client, title=f"post {n}")

    ids = [r["blog_id"] for r in list_posts(db=get_db())]
    assert len(set(ids)) == 3
    assert ids == sorted(ids, reverse=True)          # newest first


def test_front_page_renders_markdown_and_escapes_html(client):
    make_user()
    act_as(client)
    _new(client, content="**bold** <script>alert(1)</script>")

    html = client.get("/").data
    assert b"<strong>bold</strong>" in html
    assert b"<script>alert(1)</script>" not in html
    assert b"&lt;script&gt;" in html


def test_anonymous_cannot_post(client):
    rv = client.post("/new", data={"title": "x", "content": "y", "category": "Food"})
    assert rv.status_code == 403
    assert list_posts(db=get_db()) == []


# ───────────────────────── edit / update ──────────────────────────────
def test_edit_form_is_prefilled(client):
    make_user()
    act_as(client)
    _new(client, title="Draft", content="old body", category="Food")
    blog_id = _only_post()["blog_id"]

    rv = client.post("/edit", data={"blogId": blog_id, "csrf": CSRF})
    assert rv.status_code == 200
    assert b'value="Draft"' in rv.data
    assert b"old body</textarea>" in rv.data
    assert b'<option value="Food" selected>' in rv.data


def test_update_overwrites_fields_and_restamps(client):
    make_user()
    act_as(client)
    _new(client, title="Draft", content="old", category="Food")
    before = _only_post()

    rv = client.post(
        "/update",
        data={
            "blogId": before["blog_id"],
            "title": "Final",
            "category": "Technology",
            "content": "new body",
            "csrf": CSRF,
        },
    )
    assert rv.status_code == 302

    after = find_post(before["blog_id"], db=get_db())
    assert (after["title"], after["category"], after["body"]) == ("Final", "Technology", "new body")
    assert after["date_created"] != before["date_created"]
    assert after["creator_user_id"] == before["creator_user_id"]
    assert after["creator_name"] == before["creator_name"]


def test_edit_missing_post_is_404(client):
    make_user()
    act_as(client)
    assert client.post("/edit", data={"blogId": 999, "csrf": CSRF}).status_code == 404
    assert client.post(
        "/update", data={"blogId": 999, "title": "t", "content": "c", "csrf": CSRF}
    ).status_code == 404


# ───────────────────────── delete ─────────────────────────────────────
def test_delete_removes_post(client):
    make_user()
    act_as(client)
    _new(client)
    blog_id = _only_post()["blog_id"]

    rv = client.post("/delete", data={"blogId": blog_id, "csrf": CSRF})
    assert rv.status_code == 302
    assert all(r["blog_id"] != blog_id for r in list_posts(db=get_db()))


def test_delete_nonexistent_id_still_redirects(client):
    make_user()
    act_as(client)
    rv = client.post("/delete", data={"blogId": 12345, "csrf": CSRF})
    assert rv.status_code == 302
    rv = client.post("/delete", data={"blogId": "not-a-number", "csrf": CSRF})
    assert rv.status_code == 302


# ───────────────────────── ownership ──────────────────────────────────
def test_other_user_cannot_touch_post(client):
    make_user("alice", "pw123", "Alice A")
    make_user("mallory", "pw", "Mallory")
    act_as(client, "alice", "Alice A")
    _new(client, title="Mine")
    blog_id = _only_post()["blog_id"]

    act_as(client, "mallory", "Mallory")
    assert client.post("/delete", data={"blogId": blog_id, "csrf": CSRF}).status_code == 403
    assert client.post("/edit", data={"blogId": blog_id, "csrf": CSRF}).status_code == 403
    rv = client.post(
        "/update",
        data={"blogId": blog_id, "title": "pwned", "content": "x", "category": "Food", "csrf": CSRF},
    )
    assert rv.status_code == 403
    assert b"You can only change your own posts." in rv.data

    assert find_post(blog_id, db=get_db())["title"] == "Mine"


def test_anonymous_cannot_delete(client):
    make_user()
    act_as(client)
    _new(client)
    blog_id = _only_post()["blog_id"]

    client.post("/signout", data={"csrf": CSRF})
    assert client.post("/delete", data={"blogId": blog_id}).status_code == 403
    assert find_post(blog_id, db=get_db()) is not None


def test_anonymous_cannot_edit_or_update(client):
    make_user()
    act_as(client)
    _new(client, title="Mine", content="untouched", category="Food")
    before = _only_post()

    client.post("/signout", data={"csrf": CSRF})
    assert client.post("/edit", data={"blogId": before["blog_id"]}).status_code == 403
    rv = client.post(
        "/update",
        data={"blogId": before["blog_id"], "title": "pwned", "content": "x", "category": "Travel"},
    )
    assert rv.status_code == 403

    after = find_post(before["blog_id"], db=get_db())
    assert (after["title"], after["body"], after["category"], after["date_created"]) == (
        before["title"], before["body"], before["category"], before["date_created"]
    )


def test_edit_buttons_only_for_owner(client):
    make_user("alice", "pw123", "Alice A")
    make_user("bob", "pw", "Bob")
    act_as(client, "alice", "Alice A")
    _new(client)

    assert b'action="/edit"' in client.get("/").data
    act_as(client, "bob", "Bob")
    assert b'action="/edit"' not in client.get("/").data
