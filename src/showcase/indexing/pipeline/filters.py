from __future__ import annotations

QUALIFYING_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp")
ANIMATED_MIME = "image/gif"
ANIMATED_EXTENSION = ".gif"


def is_qualifying_image(filename: str, content_type: str | None) -> bool:
    """True for static images the presentation renderer can use.

    A declared ``image/gif`` content type always excludes the attachment,
    whatever its filename says.
    """
    if content_type == ANIMATED_MIME:
        return False
    if content_type is not None and content_type.startswith("image/"):
        return True
    name = filename.lower()
    if name.endswith(ANIMATED_EXTENSION):
        return False
    return name.endswith(QUALIFYING_EXTENSIONS)


__all__ = ["QUALIFYING_EXTENSIONS", "is_qualifying_image"]
