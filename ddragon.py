from __future__ import annotations
from typing import Dict
import requests

from model import champion_slug

DDRAGON = "https://ddragon.leagueoflegends.com"


def get_latest_version(timeout: float = 10) -> str:
    r = requests.get(f"{DDRAGON}/api/versions.json", timeout=timeout)
    r.raise_for_status()
    return r.json()[0]


def get_champion_slugs(version: str, timeout: float = 10) -> Dict[str, str]:
    """
    Returns mapping: site slug -> display name, e.g. "monkeyking" -> "Wukong".
    Used as roster fallback when the site's own listing cannot be read.
    """
    url = f"{DDRAGON}/cdn/{version}/data/en_US/champion.json"
    r = requests.get(url, timeout=timeout)
    r.raise_for_status()
    data = r.json()["data"]
    out: Dict[str, str] = {}
    for champ in data.values():
        out[champion_slug(champ["id"], champ["name"])] = champ["name"]
    return out
