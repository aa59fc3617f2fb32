# app/adapters/scraping/registry.py
from __future__ import annotations

from typing import Iterable

from ...domain.errors import ConfigError
from .base import BaseAdapter
from .sites.nigeria_property_centre import NigeriaPropertyCentreAdapter
from .sites.prime_location import PrimeLocationAdapter
from .sites.properstar import ProperstarAdapter
from .sites.zoopla import ZooplaAdapter


def build_registry(adapters: Iterable[BaseAdapter]) -> dict[str, BaseAdapter]:
    reg: dict[str, BaseAdapter] = {}
    for a in adapters:
        if a.name in reg:
            raise ConfigError(f"duplicate adapter name: {a.name}")
        reg[a.name] = a
    return reg


def default_adapters() -> dict[str, BaseAdapter]:
    return build_registry(
        [
            NigeriaPropertyCentreAdapter(),
            ProperstarAdapter(),
            ZooplaAdapter(),
            PrimeLocationAdapter(),
        ]
    )
