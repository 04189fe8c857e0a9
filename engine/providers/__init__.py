"""IPTV provider adapters."""

from .base import BaseIPTVProvider
from .pipeline import ProviderPipeline, TitleAccumulator
from .agtv import AGTVProvider, parse_m3u8
from .xtream import XtreamProvider

PROVIDER_CLASSES = {
    AGTVProvider.provider_type: AGTVProvider,
    XtreamProvider.provider_type: XtreamProvider,
}

__all__ = [
    "BaseIPTVProvider",
    "ProviderPipeline",
    "TitleAccumulator",
    "AGTVProvider",
    "XtreamProvider",
    "parse_m3u8",
    "PROVIDER_CLASSES",
]
