"""User-supplied text cleanup.

Learn: Content is rendered by the web client, so it goes through an
HTML sanitizer (nh3, the ammonia bindings) before anything is stored.
Two policies:
- clean_text — strict, no markup survives (notifications, discussions)
- clean_rich_text — a small allow-list of inline formatting (chat)

Plain characters are escaped rather than dropped, so `x < 5` is kept as
`x &lt; 5`. A message that was nothing but markup comes out empty, and
callers reject it.
"""

import nh3

CHAT_TAGS = {"a", "b", "br", "code", "em", "i", "p", "pre", "strong", "u"}


def clean_text(value: str) -> str:
    """Strip every tag (script/style bodies included), trim whitespace."""
    return nh3.clean(value, tags=set()).strip()


def clean_rich_text(value: str) -> str:
    """Keep CHAT_TAGS, drop everything else."""
    return nh3.clean(value, tags=CHAT_TAGS).strip()
