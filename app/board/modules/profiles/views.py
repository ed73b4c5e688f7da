from __future__ import annotations

from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for

from app.board.db import atomic, db_session
from app.board.errors import ConflictError, ValidationError
from app.board.guard import login_required
from app.board.modules.profiles.service import check_profile_payload, delete_account, update_profile, verify_password
from app.board.sessions import refresh_identity, sign_out
from app.board.storage import discard_upload, is_allowed_image, save_upload
from app.board.utils import current_user, flash_error

bp = Blueprint("profiles", __name__)


# ---------- View (password re-confirmation first) ----------
@bp.get("/profile")
@login_required
def profile_get():
    return render_template("profiles/confirm_password.html")


@bp.post("/profile")
@login_required
def profile_confirm():
    u = current_user()
    if not verify_password(u, request.form.get("password")):
        flash("Password does not match.", "danger")
        return render_template("profiles/confirm_password.html"), 401
    return render_template("profiles/edit.html", user=u)


# ---------- Edit ----------
@bp.route("/profile", methods=["PUT"])
@bp.post("/profile/edit")
@login_required
def profile_update():
    s = db_session()
    u = current_user()
    payload = {
        "display_name": request.form.get("display_name"),
        "new_password": request.form.get("new_password"),
    }

    f = request.files.get("profile_image")
    has_upload = bool(f and f.filename)
    if has_upload and not is_allowed_image(f.filename, current_app.config["ALLOWED_IMAGE_EXTENSIONS"]):
        flash("Only image files (png, jpg, jpeg, gif, webp) can be uploaded.", "danger")
        return render_template("profiles/edit.html", user=u), 400

    profile_image = None
    try:
        # Nothing is stored until the form is known to be valid.
        check_profile_payload(s, u, payload)
        if has_upload:
            profile_image = save_upload(f, current_app.config)
        update_profile(s, u, payload, profile_image=profile_image)
        s.commit()
    except ConflictError as e:
        s.rollback()
        discard_upload(profile_image, current_app.config)
        flash_error(e)
        return render_template("profiles/edit.html", user=u), 409
    except ValidationError as e:
        s.rollback()
        discard_upload(profile_image, current_app.config)
        flash_error(e)
        return render_template("profiles/edit.html", user=u), 400

    refresh_identity(u)
    flash("Profile updated.", "success")
    return redirect(url_for("posts.index"))


# ---------- Delete ----------
@bp.route("/profile", methods=["DELETE"])
@bp.post("/profile/delete")
@login_required
def profile_delete():
    s = db_session()
    u = current_user()
    user_id = u.id
    with atomic(s):
        delete_account(s, u)
    current_app.logger.info("Account deleted user_id=%s", user_id)
    sign_out()
    return redirect(url_for("auth.register_get"))
