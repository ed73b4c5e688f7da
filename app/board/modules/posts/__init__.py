"""
Posts and comments.

- Every post and comment is owned by exactly one user (by id).
- Edits and deletes go through the ownership guard first.
- Deleting a post removes its comments in the same transaction.
"""
