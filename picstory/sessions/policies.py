"""
Per-kind parameters that specialise the single workflow engine.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import ValidationError
from .models import BillingMode


@dataclass(frozen=True)
class ContentPolicy:
    """
    Attributes
    ----------
    kind:
        Stable identifier stored on every session created with this policy.
    max_pages:
        Ceiling for the number of interior pages accepted at planning time.
    billing_mode:
        Whether the whole session is charged at planning or each render is charged.
    cover_in_color / interior_line_art:
        Colour treatment for the cover and interior renders.
    include_title_on_cover:
        Ask the image model to typeset the exact title on the cover.
    captions_enabled:
        Seed ``Page.text`` from the planner's captions.
    print_directives:
        Append the session's print target to every prompt.
    history_size:
        Number of prior renders offered as continuity context for Generate.
    edit_history_size:
        Number of prior renders offered alongside the current artifact for Edit.
    use_case:
        Human label forwarded to the image backend's print instructions.
    """

    kind: str
    max_pages: int
    billing_mode: BillingMode
    cover_in_color: bool = True
    interior_line_art: bool = False
    include_title_on_cover: bool = False
    captions_enabled: bool = True
    print_directives: bool = True
    history_size: int = 2
    edit_history_size: int = 2
    use_case: str = "children's picture book"


COLORING_BOOK = ContentPolicy(
    kind="coloring_book",
    max_pages=150,
    billing_mode=BillingMode.PRECHARGED,
    interior_line_art=True,
    include_title_on_cover=True,
    print_directives=False,
    history_size=2,
    edit_history_size=2,
    use_case="coloring-book",
)

STORYBOOK = ContentPolicy(
    kind="storybook",
    max_pages=30,
    billing_mode=BillingMode.PER_PAGE,
    history_size=3,
    edit_history_size=2,
    use_case="storybook",
)

POEM_COLLECTION = ContentPolicy(
    kind="poem_collection",
    max_pages=30,
    billing_mode=BillingMode.PER_PAGE,
    history_size=2,
    edit_history_size=2,
    use_case="poems",
)

POLICIES: dict[str, ContentPolicy] = {
    policy.kind: policy for policy in (COLORING_BOOK, STORYBOOK, POEM_COLLECTION)
}


def get_policy(kind: str) -> ContentPolicy:
    normalized = kind.strip().lower().replace("-", "_")
    try:
        return POLICIES[normalized]
    except KeyError as exc:
        supported = ", ".join(sorted(POLICIES))
        raise ValidationError(f"Unknown content kind '{kind}'. Supported kinds: {supported}.") from exc
