"""Internal plugin contract.

An internal plugin contributes one extra report table.  It is bound to an
ARM client before the run and produces a ``PluginOutput`` from the scan
context (subscriptions and filters are read from there).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from collectors.azure_client import AzureClient
from engine.context import ScanContext
from schemas.domain import PluginOutput

PLUGIN_TYPE_YAML = "yaml"
PLUGIN_TYPE_INTERNAL = "internal"


@dataclass(frozen=True)
class PluginMetadata:
    name: str
    version: str = "1.0.0"
    description: str = ""
    author: str = ""
    license: str = ""
    type: str = PLUGIN_TYPE_INTERNAL


class InternalPlugin(Protocol):
    def metadata(self) -> PluginMetadata: ...

    def init(self, client: AzureClient) -> None: ...

    def scan(self, context: ScanContext) -> PluginOutput: ...
