from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import or_

from app.board.audit import record_event
from app.board.errors import NotFound, PermissionDenied, ValidationError
from app.board.guard import ensure_owner
from app.board.modules.posts.models import Comment, Post

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.board.models import User


SORT_COLUMNS = {
    "title": Post.title,
    "rating": Post.rating,
    "date": Post.id,
}
DEFAULT_SORT = "date"
TITLE_MAX = 200
RATING_MIN, RATING_MAX = 0, 5


@dataclass(frozen=True)
class ListQuery:
    q: str
    sort: str
    order: str


def normalize_list_query(q: str | None, sort: str | None, order: str | None) -> ListQuery:
    """Unknown sort keys fall back to creation order; anything but 'asc' is descending."""
    sort_key = (sort or "").strip().lower()
    if sort_key not in SORT_COLUMNS:
        sort_key = DEFAULT_SORT
    order_key = "asc" if (order or "").strip().lower() == "asc" else "desc"
    return ListQuery(q=(q or "").strip(), sort=sort_key, order=order_key)


def list_posts(s: "Session", lq: ListQuery) -> list[Post]:
    query = s.query(Post)
    if lq.q:
        # autoescape: '%' and '_' in the query are literal characters
        query = query.filter(
            or_(
                Post.title.icontains(lq.q, autoescape=True),
                Post.content.icontains(lq.q, autoescape=True),
            )
        )

    # Unrated posts sort as the lowest rating on every backend.
    col = SORT_COLUMNS[lq.sort]
    if lq.order == "asc":
        query = query.order_by(col.asc().nulls_first(), Post.id.asc())
    else:
        query = query.order_by(col.desc().nulls_last(), Post.id.desc())
    return query.all()


def get_post(s: "Session", post_id: int) -> Post:
    post = s.get(Post, post_id)
    if not post:
        raise NotFound("Post not found.")
    return post


def _parse_float(raw: str | None, label: str, errors: list[str]) -> float | None:
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        errors.append(f"{label} must be a number.")
        return None


def validate_post_payload(payload: dict) -> tuple[dict, list[str]]:
    """Validate and coerce a create/edit form. Returns (clean values, errors)."""
    errors: list[str] = []

    title = (payload.get("title") or "").strip()
    if not title:
        errors.append("Title is required.")
    elif len(title) > TITLE_MAX:
        errors.append(f"Title must be at most {TITLE_MAX} characters.")

    rating: int | None = None
    raw_rating = (payload.get("rating") or "").strip()
    if raw_rating:
        try:
            rating = int(raw_rating)
        except ValueError:
            errors.append("Rating must be a whole number.")
        else:
            if not RATING_MIN <= rating <= RATING_MAX:
                errors.append(f"Rating must be between {RATING_MIN} and {RATING_MAX}.")

    lat = _parse_float(payload.get("lat"), "Latitude", errors)
    lng = _parse_float(payload.get("lng"), "Longitude", errors)
    if lat is not None and not -90 <= lat <= 90:
        errors.append("Latitude must be between -90 and 90.")
    if lng is not None and not -180 <= lng <= 180:
        errors.append("Longitude must be between -180 and 180.")

    clean = {
        "title": title,
        "content": (payload.get("content") or "").strip(),
        "rating": rating,
        "lat": lat,
        "lng": lng,
    }
    return clean, errors


def create_post(s: "Session", payload: dict, user: "User", *, image: str | None = None) -> Post:
    clean, errors = validate_post_payload(payload)
    if errors:
        raise ValidationError(errors)

    post = Post(
        user_id=user.id,
        title=clean["title"],
        content=clean["content"],
        image=image,
        rating=clean["rating"],
        lat=clean["lat"],
        lng=clean["lng"],
        created_at=datetime.utcnow(),
    )
    s.add(post)
    s.flush()

    record_event(
        s,
        actor=user,
        action="post.create",
        entity_type="Post",
        entity_id=str(post.id),
        message=f"{user.display_name} wrote '{post.title}'",
        metadata={"has_image": image is not None},
    )
    return post


def _deny(s: "Session", user: "User", action: str, entity_type: str, entity_id: int, e: PermissionDenied) -> None:
    record_event(s, actor=user, action=action, entity_type=entity_type, entity_id=str(entity_id), message=e.message)


def authorize_post(s: "Session", post: Post, user: "User") -> None:
    try:
        ensure_owner(user, post, what="post")
    except PermissionDenied as e:
        _deny(s, user, "post.denied", "Post", post.id, e)
        raise


def update_post(s: "Session", post: Post, payload: dict, user: "User", *, image: str | None = None) -> Post:
    """Update a post the caller owns. A missing upload keeps the current image."""
    authorize_post(s, post, user)
    clean, errors = validate_post_payload(payload)
    if errors:
        raise ValidationError(errors)

    changes = {}
    for field in ("title", "content", "rating", "lat", "lng"):
        old = getattr(post, field)
        if clean[field] != old:
            changes[field] = {"old": old, "new": clean[field]}
            setattr(post, field, clean[field])
    if image:
        changes["image"] = {"old": post.image, "new": image}
        post.image = image

    record_event(
        s,
        actor=user,
        action="post.edit",
        entity_type="Post",
        entity_id=str(post.id),
        metadata={"changes": changes},
    )
    return post


def delete_post(s: "Session", post: Post, user: "User") -> None:
    """Delete a post and its comments; the caller commits both as one transaction."""
    authorize_post(s, post, user)
    post_id, title = post.id, post.title
    # delete-orphan cascade removes every comment row along with the post
    s.delete(post)
    record_event(
        s,
        actor=user,
        action="post.delete",
        entity_type="Post",
        entity_id=str(post_id),
        message=f"{user.display_name} deleted '{title}'",
    )


# ---------- Comments ----------
def list_comments(s: "Session", post_id: int) -> list[Comment]:
    return s.query(Comment).filter(Comment.post_id == post_id).order_by(Comment.id.desc()).all()


def get_comment(s: "Session", comment_id: int) -> Comment:
    comment = s.get(Comment, comment_id)
    if not comment:
        raise NotFound("Comment not found.")
    return comment


def _clean_comment(content: str | None) -> str:
    text = (content or "").strip()
    if not text:
        raise ValidationError(["Comment cannot be empty."])
    return text


def add_comment(s: "Session", post: Post, content: str | None, user: "User") -> Comment:
    comment = Comment(post_id=post.id, user_id=user.id, content=_clean_comment(content), created_at=datetime.utcnow())
    s.add(comment)
    s.flush()
    record_event(
        s,
        actor=user,
        action="comment.create",
        entity_type="Comment",
        entity_id=str(comment.id),
        metadata={"post_id": post.id},
    )
    return comment


def authorize_comment(s: "Session", comment: Comment, user: "User") -> None:
    try:
        ensure_owner(user, comment, what="comment")
    except PermissionDenied as e:
        _deny(s, user, "comment.denied", "Comment", comment.id, e)
        raise


def update_comment(s: "Session", comment: Comment, content: str | None, user: "User") -> Comment:
    authorize_comment(s, comment, user)
    text = _clean_comment(content)
    old = comment.content
    comment.content = text
    record_event(
        s,
        actor=user,
        action="comment.edit",
        entity_type="Comment",
        entity_id=str(comment.id),
        metadata={"post_id": comment.post_id, "changes": {"content": {"old": old, "new": text}}},
    )
    return comment


def delete_comment(s: "Session", comment: Comment, user: "User") -> int:
    """Delete a comment the caller owns; returns its post id for the redirect."""
    authorize_comment(s, comment, user)
    post_id = comment.post_id
    s.delete(comment)
    record_event(
        s,
        actor=user,
        action="comment.delete",
        entity_type="Comment",
        entity_id=str(comment.id),
        metadata={"post_id": post_id},
    )
    return post_id
