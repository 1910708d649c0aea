"""Click parameter normalization onto the canonical attribution attributes"""
import re
import unicodedata
from typing import Any, Dict, List, Optional, Tuple

from src.click_attribution.models.click_session import DEFAULT_ATTRIBUTES


ATTRIBUTE_ALIASES: Dict[str, List[str]] = {
    "source": ["source", "utm_source", "CampaignSource", "Campaign Source", "Campaign_Source"],
    "medium": ["medium", "utm_medium", "AdSetName", "Ad Set Name", "Ad_Set_Name"],
    "campaign": ["campaign", "utm_campaign", "CampaignName", "Campaign Name", "Campaign_Name"],
    "content": ["content", "utm_content", "AdName", "Ad Name", "Ad_Name"],
    "placement": ["placement", "utm_placement", "Placement"],
}

# keys that never count as attribution params
RESERVED_KEYS = {"sessionid", "phonenumber", "originalparams"}

NESTED_PARAM_KEYS = ("original_params", "originalParams")


def normalize_key(name: str) -> str:
    normalized = unicodedata.normalize("NFKC", name).lower()
    return re.sub(r"[\s\-_\.]+", "", normalized)


_ALIAS_LOOKUP: Dict[str, str] = {
    normalize_key(alias): canonical
    for canonical, aliases in ATTRIBUTE_ALIASES.items()
    for alias in aliases
}


def map_attribute_name(raw_name: str) -> Optional[str]:
    return _ALIAS_LOOKUP.get(normalize_key(raw_name))


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def split_attributes(params: Dict[str, Any]) -> Tuple[Dict[str, str], Dict[str, Any]]:
    """Split raw click params into canonical attributes and everything else.

    Values nested under ``original_params`` take precedence over top-level
    ones, matching how click reporters wrap ad-platform parameters.
    Canonical attributes are returned without defaults applied.
    """
    canonical: Dict[str, str] = {}
    extras: Dict[str, Any] = {}

    nested: Dict[str, Any] = {}
    for key in NESTED_PARAM_KEYS:
        value = params.get(key)
        if isinstance(value, dict):
            nested.update(value)

    for source in (nested, params):
        for key, value in source.items():
            if key in NESTED_PARAM_KEYS or normalize_key(key) in RESERVED_KEYS:
                continue
            mapped = map_attribute_name(key)
            if mapped is None:
                if source is params and key not in extras:
                    extras[key] = value
                continue
            cleaned = _clean(value)
            if cleaned is not None and mapped not in canonical:
                canonical[mapped] = cleaned

    return canonical, extras


def with_defaults(attributes: Dict[str, str]) -> Dict[str, str]:
    return {name: attributes.get(name) or default for name, default in DEFAULT_ATTRIBUTES.items()}
