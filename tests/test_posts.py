"""Tests for posts and comments: listing, ownership and cascades."""
import io
import re

import pytest
from werkzeug.security import generate_password_hash

from app.board import create_app
from app.board.db import session_scope
from app.board.models import ActivityEvent, Base, User
from app.board.modules.posts.models import Comment, Post


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("UPLOAD_FOLDER", str(tmp_path / "uploads"))
    monkeypatch.setenv("SESSION_BACKEND", "memory")
    monkeypatch.setenv("MAIL_BACKEND", "memory")
    monkeypatch.setenv("CSRF_ENABLED", "0")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add_all(
            [
                User(username="alice", display_name="Alice", password_hash=generate_password_hash("pw1234")),
                User(username="bob", display_name="Bob", password_hash=generate_password_hash("pw1234")),
            ]
        )

    return app.test_client()


def _login(client, username="alice"):
    client.post("/login", data={"username": username, "password": "pw1234"}, follow_redirects=True)


def _other_client(client, username="bob"):
    other = client.application.test_client()
    _login(other, username)
    return other


def _user_id(app, username):
    with session_scope(app) as s:
        return s.query(User).filter(User.username == username).one().id


def _seed_post(app, username="alice", **fields):
    uid = _user_id(app, username)
    with session_scope(app) as s:
        p = Post(user_id=uid, title=fields.pop("title", "Seeded"), content=fields.pop("content", ""), **fields)
        s.add(p)
        s.flush()
        return p.id


def _seed_comment(app, post_id, username="alice", content="hi"):
    uid = _user_id(app, username)
    with session_scope(app) as s:
        c = Comment(post_id=post_id, user_id=uid, content=content)
        s.add(c)
        s.flush()
        return c.id


def test_write_without_image_creates_post_with_no_comments(client):
    _login(client)
    r = client.post("/write", data={"title": "Test", "content": "Body"}, follow_redirects=False)
    assert r.status_code == 302

    with session_scope(client.application) as s:
        post = s.query(Post).filter(Post.title == "Test").one()
        assert post.image is None
        assert post.user_id == _user_id(client.application, "alice")
        post_id = post.id

    r = client.get(f"/post/{post_id}")
    assert r.status_code == 200
    assert b"Test" in r.data
    assert b"Comments (0)" in r.data
    assert b"No comments yet." in r.data


def test_write_with_image_and_location(client, tmp_path):
    _login(client)
    r = client.post(
        "/write",
        data={
            "title": "With picture",
            "content": "See attached",
            "rating": "4",
            "lat": "37.5665",
            "lng": "126.9780",
            "image": (io.BytesIO(b"\x89PNG fake"), "Holiday Photo.PNG"),
        },
        content_type="multipart/form-data",
        follow_redirects=False,
    )
    assert r.status_code == 302

    with session_scope(client.application) as s:
        post = s.query(Post).filter(Post.title == "With picture").one()
        assert re.fullmatch(r"\d+-\d+\.png", post.image)
        assert post.rating == 4
        assert post.lat == pytest.approx(37.5665)
        assert post.lng == pytest.approx(126.9780)
        image = post.image

    assert (tmp_path / "uploads" / image).read_bytes() == b"\x89PNG fake"
    r = client.get(f"/uploads/{image}")
    assert r.status_code == 200
    assert r.data == b"\x89PNG fake"


def test_write_rejects_non_image_upload(client):
    _login(client)
    r = client.post(
        "/write",
        data={"title": "Script", "image": (io.BytesIO(b"#!/bin/sh"), "run.sh")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    with session_scope(client.application) as s:
        assert s.query(Post).count() == 0


def test_write_validation_errors_are_escaped(client):
    _login(client)
    r = client.post("/write", data={"title": "", "rating": "<script>alert(1)</script>"})
    assert r.status_code == 400
    assert b"Title is required." in r.data
    assert b"<script>alert(1)</script>" not in r.data
    with session_scope(client.application) as s:
        assert s.query(Post).count() == 0


def test_list_sort_by_rating_ascending(client):
    app = client.application
    for rating in (3, 1, 5, 1, 4):
        _seed_post(app, title=f"r{rating}", rating=rating)
    _login(client)

    r = client.get("/?sort=rating&order=asc")
    assert r.status_code == 200
    ratings = [int(x) for x in re.findall(rb'data-rating="(\d+)"', r.data)]
    assert len(ratings) == 5
    assert ratings == sorted(ratings)


def test_list_unknown_sort_falls_back_to_newest_first(client):
    app = client.application
    ids = [_seed_post(app, title=t) for t in ("b", "a", "c")]
    _login(client)

    r = client.get("/?sort=bogus&order=sideways")
    listed = [int(x) for x in re.findall(rb'data-post-id="(\d+)"', r.data)]
    assert listed == sorted(ids, reverse=True)


def test_list_sort_by_title(client):
    app = client.application
    for t in ("banana", "apple", "cherry"):
        _seed_post(app, title=t)
    _login(client)

    r = client.get("/?sort=title&order=asc")
    body = r.data.decode()
    assert body.index("apple") < body.index("banana") < body.index("cherry")


def test_list_filter_matches_title_or_content(client):
    app = client.application
    _seed_post(app, title="Hiking trip", content="mountains")
    _seed_post(app, title="Recipe", content="a trip through spices")
    _seed_post(app, title="Unrelated", content="nothing here")
    _login(client)

    r = client.get("/?q=trip")
    body = r.data.decode()
    assert "Hiking trip" in body
    assert "Recipe" in body
    assert "Unrelated" not in body


def test_list_filter_treats_like_wildcards_literally(client):
    app = client.application
    for t in ("a", "b", "c"):
        _seed_post(app, title=t)
    real_id = _seed_post(app, title="100% real")
    _login(client)

    r = client.get("/?q=%25")
    listed = [int(x) for x in re.findall(rb'data-post-id="(\d+)"', r.data)]
    assert listed == [real_id]

    r = client.get("/?q=_")
    assert re.findall(rb'data-post-id="(\d+)"', r.data) == []
    assert b"No posts yet." in r.data


def test_list_unrated_posts_sort_lowest(client):
    app = client.application
    for rating in (2, None, 3, 1):
        _seed_post(app, title=f"r{rating}", rating=rating)
    _login(client)

    r = client.get("/?sort=rating&order=asc")
    ratings = [x.decode() for x in re.findall(rb'data-rating="(\d*)"', r.data)]
    assert ratings == ["", "1", "2", "3"]

    r = client.get("/?sort=rating&order=desc")
    ratings = [x.decode() for x in re.findall(rb'data-rating="(\d*)"', r.data)]
    assert ratings == ["3", "2", "1", ""]


def test_owner_can_edit_post_and_keep_image(client):
    app = client.application
    post_id = _seed_post(app, title="Old", image="1-1.png")
    _login(client)

    r = client.get(f"/edit/{post_id}")
    assert r.status_code == 200

    r = client.put(f"/edit/{post_id}", data={"title": "New", "content": "Updated", "rating": "2"}, follow_redirects=False)
    assert r.status_code == 302

    with session_scope(app) as s:
        post = s.get(Post, post_id)
        assert post.title == "New"
        assert post.content == "Updated"
        assert post.rating == 2
        assert post.image == "1-1.png"


def test_edit_via_method_override_form(client):
    app = client.application
    post_id = _seed_post(app, title="Old")
    _login(client)

    r = client.post(f"/edit/{post_id}?_method=PUT", data={"title": "Overridden"}, follow_redirects=False)
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(Post, post_id).title == "Overridden"


def test_non_owner_cannot_edit_or_delete_post(client):
    app = client.application
    post_id = _seed_post(app, title="Mine", content="original")
    bob = _other_client(client)

    r = bob.get(f"/edit/{post_id}")
    assert r.status_code == 403

    r = bob.put(f"/edit/{post_id}", data={"title": "Hijacked"})
    assert r.status_code == 403
    assert b"permission" in r.data

    r = bob.delete(f"/delete/{post_id}")
    assert r.status_code == 403

    with session_scope(app) as s:
        post = s.get(Post, post_id)
        assert post is not None
        assert post.title == "Mine"
        assert post.content == "original"
        actions = [e.action for e in s.query(ActivityEvent).all()]
        assert actions.count("post.denied") == 3


def test_missing_post_redirects_with_message(client):
    _login(client)
    r = client.get("/post/9999", follow_redirects=False)
    assert r.status_code == 302
    r = client.get("/post/9999", follow_redirects=True)
    assert b"Post not found." in r.data


def test_delete_post_removes_its_comments(client):
    app = client.application
    post_id = _seed_post(app, title="Doomed")
    keep_id = _seed_post(app, title="Keeper")
    _seed_comment(app, post_id, "alice", "first")
    _seed_comment(app, post_id, "bob", "second")
    _seed_comment(app, keep_id, "bob", "stays")
    _login(client)

    r = client.delete(f"/delete/{post_id}", follow_redirects=False)
    assert r.status_code == 302

    with session_scope(app) as s:
        assert s.get(Post, post_id) is None
        assert s.query(Comment).filter(Comment.post_id == post_id).count() == 0
        assert s.query(Comment).filter(Comment.post_id == keep_id).count() == 1
        assert "post.delete" in [e.action for e in s.query(ActivityEvent).all()]


def test_comment_create_edit_delete_by_owner(client):
    app = client.application
    post_id = _seed_post(app, username="bob", title="Bob's post")
    _login(client)

    r = client.post(f"/post/{post_id}/comments", data={"comment": "Nice one"}, follow_redirects=False)
    assert r.status_code == 302
    with session_scope(app) as s:
        comment = s.query(Comment).filter(Comment.post_id == post_id).one()
        comment_id = comment.id
        assert comment.user_id == _user_id(app, "alice")

    r = client.get(f"/post/{post_id}")
    assert b"Nice one" in r.data
    assert b"Comments (1)" in r.data

    r = client.get(f"/comments/{comment_id}/edit")
    assert r.status_code == 200

    r = client.put(f"/comments/{comment_id}", data={"content": "Very nice"}, follow_redirects=False)
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(Comment, comment_id).content == "Very nice"

    r = client.post(f"/comments/{comment_id}/delete", follow_redirects=False)
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(Comment, comment_id) is None


def test_non_owner_cannot_edit_or_delete_comment(client):
    app = client.application
    post_id = _seed_post(app, title="Alice's post")
    comment_id = _seed_comment(app, post_id, "alice", "original")
    bob = _other_client(client)

    assert bob.get(f"/comments/{comment_id}/edit").status_code == 403
    assert bob.put(f"/comments/{comment_id}", data={"content": "changed"}).status_code == 403
    assert bob.delete(f"/comments/{comment_id}").status_code == 403
    assert bob.post(f"/comments/{comment_id}/delete").status_code == 403

    with session_scope(app) as s:
        comment = s.get(Comment, comment_id)
        assert comment is not None
        assert comment.content == "original"


def test_empty_comment_is_rejected(client):
    app = client.application
    post_id = _seed_post(app)
    _login(client)
    r = client.post(f"/post/{post_id}/comments", data={"comment": "   "}, follow_redirects=True)
    assert b"Comment cannot be empty." in r.data
    with session_scope(app) as s:
        assert s.query(Comment).count() == 0


def test_display_name_change_does_not_transfer_ownership(client):
    app = client.application
    post_id = _seed_post(app, title="Alice's")
    # Bob takes on the name Alice used to have; ownership stays with the id.
    with session_scope(app) as s:
        alice = s.query(User).filter(User.username == "alice").one()
        bob = s.query(User).filter(User.username == "bob").one()
        alice.display_name = "Alice Renamed"
        s.flush()
        bob.display_name = "Alice"

    bob_client = _other_client(client)
    assert bob_client.delete(f"/delete/{post_id}").status_code == 403
    with session_scope(app) as s:
        assert s.get(Post, post_id) is not None
