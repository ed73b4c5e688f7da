import io
import re

import pytest
from werkzeug.security import check_password_hash, generate_password_hash

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
                User(username="alice", display_name="Alice", password_hash=generate_password_hash("pw1234"), email="alice@example.com"),
                User(username="bob", display_name="Bob", password_hash=generate_password_hash("pw1234"), email="bob@example.com"),
            ]
        )

    c = app.test_client()
    c.post("/login", data={"username": "alice", "password": "pw1234"})
    return c


def _alice(app) -> User:
    with session_scope(app) as s:
        return s.query(User).filter(User.username == "alice").one()


def test_profile_requires_password_confirmation(client):
    r = client.get("/profile")
    assert r.status_code == 200
    assert b"alice@example.com" not in r.data

    r = client.post("/profile", data={"password": "wrong"})
    assert r.status_code == 401
    assert b"alice@example.com" not in r.data

    r = client.post("/profile", data={"password": "pw1234"})
    assert r.status_code == 200
    assert b"alice@example.com" in r.data


def test_edit_display_name_updates_session(client):
    r = client.put("/profile", data={"display_name": "Alicia", "new_password": ""}, follow_redirects=False)
    assert r.status_code == 302

    alice = _alice(client.application)
    assert alice.display_name == "Alicia"
    assert check_password_hash(alice.password_hash, "pw1234")

    with client.session_transaction() as sess:
        assert sess["display_name"] == "Alicia"

    r = client.get("/")
    assert b"Alicia" in r.data


def test_edit_password(client):
    r = client.post("/profile/edit", data={"display_name": "Alice", "new_password": "brand-new"}, follow_redirects=False)
    assert r.status_code == 302
    assert check_password_hash(_alice(client.application).password_hash, "brand-new")


def test_display_name_conflict(client):
    r = client.put("/profile", data={"display_name": "Bob"})
    assert r.status_code == 409
    assert b"That display name is already taken." in r.data
    assert _alice(client.application).display_name == "Alice"


def test_profile_image_upload(client, tmp_path):
    r = client.post(
        "/profile/edit",
        data={"display_name": "Alice", "profile_image": (io.BytesIO(b"GIF89a"), "me.gif")},
        content_type="multipart/form-data",
        follow_redirects=False,
    )
    assert r.status_code == 302

    image = _alice(client.application).profile_image
    assert re.fullmatch(r"\d+-\d+\.gif", image)
    assert (tmp_path / "uploads" / image).exists()

    with client.session_transaction() as sess:
        assert sess["profile_image"] == image

    # a later edit without an upload keeps the image
    client.put("/profile", data={"display_name": "Alice"})
    assert _alice(client.application).profile_image == image


def test_delete_account_removes_owned_content(client):
    app = client.application
    with session_scope(app) as s:
        alice = s.query(User).filter(User.username == "alice").one()
        bob = s.query(User).filter(User.username == "bob").one()
        alice_post = Post(user_id=alice.id, title="Alice's post", content="")
        bob_post = Post(user_id=bob.id, title="Bob's post", content="")
        s.add_all([alice_post, bob_post])
        s.flush()
        s.add_all(
            [
                Comment(post_id=alice_post.id, user_id=bob.id, content="bob on alice"),
                Comment(post_id=bob_post.id, user_id=alice.id, content="alice on bob"),
                Comment(post_id=bob_post.id, user_id=bob.id, content="bob on bob"),
            ]
        )
        alice_id = alice.id

    r = client.delete("/profile", follow_redirects=False)
    assert r.status_code == 302
    assert "/register" in r.headers["Location"]

    with session_scope(app) as s:
        assert s.get(User, alice_id) is None
        assert s.query(Post).filter(Post.user_id == alice_id).count() == 0
        assert s.query(Comment).filter(Comment.user_id == alice_id).count() == 0
        assert [c.content for c in s.query(Comment).all()] == ["bob on bob"]
        assert s.query(Post).count() == 1
        assert "profile.delete" in [e.action for e in s.query(ActivityEvent).all()]

    with client.session_transaction() as sess:
        assert "user_id" not in sess

    r = client.get("/", follow_redirects=False)
    assert r.status_code == 302
    assert client.post("/login", data={"username": "alice", "password": "pw1234"}).status_code == 401


def test_deleted_account_ends_other_sessions(client):
    other = client.application.test_client()
    other.post("/login", data={"username": "alice", "password": "pw1234"})

    client.post("/profile/delete")

    r = other.get("/", follow_redirects=False)
    assert r.status_code == 302
    assert "/login" in r.headers["Location"]


def test_rejected_edit_stores_no_image(client, tmp_path):
    uploads = tmp_path / "uploads"

    r = client.post(
        "/profile/edit",
        data={"display_name": "Bob", "profile_image": (io.BytesIO(b"GIF89a"), "me.gif")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 409

    r = client.post(
        "/profile/edit",
        data={"display_name": "Alice", "new_password": "x", "profile_image": (io.BytesIO(b"GIF89a"), "me.gif")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400

    assert list(uploads.iterdir()) == []
    assert _alice(client.application).profile_image is None
