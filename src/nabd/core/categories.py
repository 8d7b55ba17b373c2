"""Fixed prompt category catalogue."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Category:
    """One entry of the category catalogue.

    ``icon`` names a Lucide icon used by the frontend.
    """

    id: str
    name_ar: str
    name_en: str
    icon: str


CATEGORIES: tuple[Category, ...] = (
    Category("nature", "طبيعة", "Nature", "Mountain"),
    Category("art", "فن", "Art", "Palette"),
    Category("design", "تصميم", "Design", "PenTool"),
    Category("characters", "شخصيات", "Characters", "Users"),
    Category("fantasy", "خيال", "Fantasy", "Sparkles"),
    Category("architecture", "معمار", "Architecture", "Building"),
    Category("abstract", "تجريدي", "Abstract", "Shapes"),
    Category("portrait", "بورتريه", "Portrait", "User"),
)

CATEGORY_IDS: frozenset[str] = frozenset(c.id for c in CATEGORIES)


def is_valid_category(category_id: str) -> bool:
    return category_id in CATEGORY_IDS
