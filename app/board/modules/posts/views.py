from __future__ import annotations

from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for

from app.board.db import atomic, db_session
from app.board.errors import NotFound, PermissionDenied, ValidationError
from app.board.guard import login_required
from app.board.modules.posts.service import (
    add_comment,
    authorize_comment,
    authorize_post,
    create_post,
    delete_comment,
    delete_post,
    get_comment,
    get_post,
    list_comments,
    list_posts,
    normalize_list_query,
    update_comment,
    update_post,
    validate_post_payload,
)
from app.board.storage import is_allowed_image, save_upload
from app.board.utils import current_user, flash_error

bp = Blueprint("posts", __name__)


def _post_payload() -> dict:
    return {
        "title": request.form.get("title"),
        "content": request.form.get("content"),
        "rating": request.form.get("rating"),
        "lat": request.form.get("lat"),
        "lng": request.form.get("lng"),
    }


def _denied(e: PermissionDenied):
    # The denial itself is logged; nothing else was written.
    db_session().commit()
    return render_template("errors/403.html", message=e.message), 403


def _not_found(e: NotFound):
    flash(e.message, "danger")
    return redirect(url_for("posts.index"))


def _checked_upload(field: str) -> tuple[bool, str | None]:
    """Validate and store the optional image. Returns (ok, stored name or None)."""
    f = request.files.get(field)
    if not f or not f.filename:
        return True, None
    if not is_allowed_image(f.filename, current_app.config["ALLOWED_IMAGE_EXTENSIONS"]):
        flash("Only image files (png, jpg, jpeg, gif, webp) can be uploaded.", "danger")
        return False, None
    return True, save_upload(f, current_app.config)


# ---------- List ----------
@bp.get("/")
@login_required
def index():
    lq = normalize_list_query(request.args.get("q"), request.args.get("sort"), request.args.get("order"))
    posts = list_posts(db_session(), lq)
    return render_template("posts/index.html", posts=posts, query=lq.q, sort=lq.sort, order=lq.order)


# ---------- Write ----------
@bp.get("/write")
@login_required
def write_get():
    return render_template("posts/write.html", form={})


@bp.post("/write")
@login_required
def write_post():
    s = db_session()
    u = current_user()
    payload = _post_payload()

    _, errors = validate_post_payload(payload)
    if errors:
        flash_error(ValidationError(errors))
        return render_template("posts/write.html", form=payload), 400

    ok, image = _checked_upload("image")
    if not ok:
        return render_template("posts/write.html", form=payload), 400

    post = create_post(s, payload, u, image=image)
    s.commit()
    current_app.logger.info("Post created id=%s user_id=%s", post.id, u.id)
    return redirect(url_for("posts.index"))


# ---------- Detail ----------
@bp.get("/post/<int:post_id>")
@login_required
def post_detail(post_id: int):
    s = db_session()
    try:
        post = get_post(s, post_id)
    except NotFound as e:
        return _not_found(e)
    comments = list_comments(s, post.id)
    return render_template("posts/detail.html", post=post, comments=comments)


# ---------- Edit ----------
@bp.get("/edit/<int:post_id>")
@login_required
def edit_get(post_id: int):
    s = db_session()
    try:
        post = get_post(s, post_id)
        authorize_post(s, post, current_user())
    except NotFound as e:
        return _not_found(e)
    except PermissionDenied as e:
        return _denied(e)
    return render_template("posts/edit.html", post=post)


@bp.route("/edit/<int:post_id>", methods=["PUT", "POST"])
@login_required
def edit_put(post_id: int):
    s = db_session()
    u = current_user()
    try:
        post = get_post(s, post_id)
        authorize_post(s, post, u)
    except NotFound as e:
        return _not_found(e)
    except PermissionDenied as e:
        return _denied(e)

    payload = _post_payload()
    _, errors = validate_post_payload(payload)
    if errors:
        flash_error(ValidationError(errors))
        return render_template("posts/edit.html", post=post), 400

    ok, image = _checked_upload("image")
    if not ok:
        return render_template("posts/edit.html", post=post), 400

    update_post(s, post, payload, u, image=image)
    s.commit()
    return redirect(url_for("posts.post_detail", post_id=post_id))


# ---------- Delete ----------
@bp.route("/delete/<int:post_id>", methods=["DELETE", "POST"])
@login_required
def delete(post_id: int):
    s = db_session()
    try:
        post = get_post(s, post_id)
    except NotFound as e:
        return _not_found(e)
    u = current_user()
    try:
        authorize_post(s, post, u)
    except PermissionDenied as e:
        return _denied(e)
    with atomic(s):
        delete_post(s, post, u)
    flash("Post deleted.", "success")
    return redirect(url_for("posts.index"))


# ---------- Comments ----------
@bp.post("/post/<int:post_id>/comments")
@login_required
def comment_create(post_id: int):
    s = db_session()
    try:
        post = get_post(s, post_id)
        add_comment(s, post, request.form.get("comment"), current_user())
    except NotFound as e:
        return _not_found(e)
    except ValidationError as e:
        flash_error(e)
        return redirect(url_for("posts.post_detail", post_id=post_id))
    s.commit()
    return redirect(url_for("posts.post_detail", post_id=post_id))


@bp.get("/comments/<int:comment_id>/edit")
@login_required
def comment_edit_get(comment_id: int):
    s = db_session()
    try:
        comment = get_comment(s, comment_id)
        authorize_comment(s, comment, current_user())
    except NotFound as e:
        return _not_found(e)
    except PermissionDenied as e:
        return _denied(e)
    return render_template("posts/edit_comment.html", comment=comment)


@bp.route("/comments/<int:comment_id>", methods=["PUT", "POST"])
@login_required
def comment_update(comment_id: int):
    s = db_session()
    try:
        comment = get_comment(s, comment_id)
        update_comment(s, comment, request.form.get("content"), current_user())
    except NotFound as e:
        return _not_found(e)
    except PermissionDenied as e:
        return _denied(e)
    except ValidationError as e:
        s.rollback()
        flash_error(e)
        return redirect(url_for("posts.comment_edit_get", comment_id=comment_id))
    s.commit()
    return redirect(url_for("posts.post_detail", post_id=comment.post_id))


@bp.route("/comments/<int:comment_id>", methods=["DELETE"])
@bp.route("/comments/<int:comment_id>/delete", methods=["DELETE", "POST"])
@login_required
def comment_delete(comment_id: int):
    s = db_session()
    try:
        comment = get_comment(s, comment_id)
    except NotFound as e:
        return _not_found(e)
    u = current_user()
    try:
        authorize_comment(s, comment, u)
    except PermissionDenied as e:
        return _denied(e)
    with atomic(s):
        post_id = delete_comment(s, comment, u)
    return redirect(url_for("posts.post_detail", post_id=post_id))
