from enum import Enum


class Topic(str, Enum):
    """Closed catalog of domain events the dispatcher knows how to handle."""
    POST_CREATED = "post.created"
    POST_UPDATED = "post.updated"
    POST_DELETED = "post.deleted"

    TAG_CREATED = "tag.created"
    TAG_UPDATED = "tag.updated"
    TAG_DELETED = "tag.deleted"
    TAGS_NIGHTLY_STATS = "tags.nightly.stats"

    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"

    COMMENT_CREATED = "comment.created"
    COMMENT_UPDATED = "comment.updated"
    COMMENT_DELETED = "comment.deleted"
    COMMENT_RESTORED = "comment.restored"

    FORM_CREATED = "form.created"
    FORM_UPDATED = "form.updated"
    FORM_DELETED = "form.deleted"
    FORM_SUBMITTED = "form.submitted"

    FIELD_CREATED = "field.created"
    FIELD_UPDATED = "field.updated"
    FIELD_DELETED = "field.deleted"

    SUBMISSION_CREATED = "submission.created"

    # Anything published under a name outside the catalog
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, name: str) -> "Topic":
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN
