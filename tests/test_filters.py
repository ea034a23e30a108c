from __future__ import annotations

import pytest

from showcase.indexing.pipeline.filters import is_qualifying_image


@pytest.mark.parametrize(
    ("filename", "content_type"),
    [
        ("photo.PNG", None),
        ("a.jpg", "image/jpeg"),
        ("scan.jpeg", None),
        ("sticker.webp", None),
        ("no-extension", "image/png"),
    ],
)
def test_static_images_qualify(filename: str, content_type: str | None) -> None:
    assert is_qualifying_image(filename, content_type)


@pytest.mark.parametrize(
    ("filename", "content_type"),
    [
        ("anim.gif", "image/gif"),
        ("clip.webp", "image/gif"),
        ("anim.GIF", None),
        ("doc.pdf", "application/pdf"),
        ("notes.txt", None),
    ],
)
def test_animated_and_non_images_are_excluded(filename: str, content_type: str | None) -> None:
    assert not is_qualifying_image(filename, content_type)
