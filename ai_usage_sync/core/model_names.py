"""
Model name normalization.

Providers spell the same model many ways (dated ids, reversed short forms,
thinking variants). Stored rows use one canonical name per model.
"""

import re

MODEL_DEFAULT = "default"

_DEFAULT_ALIASES = {"default", "auto", "unknown"}
_FAMILIES = ("opus", "sonnet", "haiku")

_DATE_SUFFIX = re.compile(r"-\d{8}$")
_VERSION = r"(\d+(?:[.-]\d+)?)"
_FAMILY_FIRST = re.compile(rf"^(opus|sonnet|haiku)-{_VERSION}$")
_VERSION_FIRST = re.compile(rf"^{_VERSION}-(opus|sonnet|haiku)$")
_BARE_VERSION = re.compile(r"^\d+(?:\.\d+)?$")


def _version(raw: str) -> str:
    return raw.replace("-", ".")


def normalize_model_name(model: str) -> str:
    """Collapse a provider model id to its canonical short name.

    Examples:
        claude-sonnet-4-20250514 -> sonnet-4
        claude-3-5-haiku-20241022 -> haiku-3.5
        claude-4-sonnet-high-thinking -> sonnet-4 (HT)
        gpt-4o -> gpt-4o
    """
    if not model:
        return model

    name = model.strip().lower()
    if name in _DEFAULT_ALIASES:
        return MODEL_DEFAULT

    suffix = ""
    if name.endswith("-high-thinking"):
        name, suffix = name[: -len("-high-thinking")], " (HT)"
    elif name.endswith("-thinking"):
        name, suffix = name[: -len("-thinking")], " (T)"
    elif name.endswith(" (thinking)"):
        name, suffix = name[: -len(" (thinking)")], " (T)"
    elif name.endswith(" (t)"):
        name, suffix = name[: -len(" (t)")], " (T)"

    name = _DATE_SUFFIX.sub("", name)
    if name.startswith("claude-"):
        name = name[len("claude-"):]

    if _BARE_VERSION.match(name):
        return f"sonnet-{name}{suffix}"

    match = _FAMILY_FIRST.match(name)
    if match:
        return f"{match.group(1)}-{_version(match.group(2))}{suffix}"

    match = _VERSION_FIRST.match(name)
    if match:
        return f"{match.group(2)}-{_version(match.group(1))}{suffix}"

    return f"{name}{suffix}"
