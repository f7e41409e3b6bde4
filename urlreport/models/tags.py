"""Remote tags arrive either as objects carrying a ``name`` or as bare strings."""
from dataclasses import dataclass


@dataclass(frozen=True)
class NamedTag:
    name: str

    @property
    def label(self) -> str:
        return self.name


@dataclass(frozen=True)
class PlainTag:
    value: str

    @property
    def label(self) -> str:
        return self.value


Tag = NamedTag | PlainTag


def parse_tag(raw: object) -> Tag | None:
    if isinstance(raw, dict):
        name = raw.get("name")
        return NamedTag(name) if isinstance(name, str) and name else None
    if isinstance(raw, str) and raw:
        return PlainTag(raw)
    return None


def extract_tag_names(raw: object) -> list[str]:
    """
    Turn a remote tag payload into a list of label strings.
    Accepts a list of tags or a single tag object; anything else yields no tags.
    """
    if raw is None:
        return []
    items = raw if isinstance(raw, list) else [raw]
    labels = []
    for item in items:
        tag = parse_tag(item)
        if tag is not None:
            labels.append(tag.label)
    return labels
