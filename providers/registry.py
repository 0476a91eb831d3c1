"""
providers/registry.py -- Name -> Provider lookup.

The route layer validates every {provider} path segment against this
registry before doing anything else, so an arbitrary name can never reach a
cookie name or an outbound URL.
"""

from __future__ import annotations

from typing import Optional

from core.config import Settings
from providers.base import Provider
from providers.github import GitHubProvider
from providers.google import GoogleProvider
from providers.jira import JiraProvider
from providers.slack import SlackProvider

jira = JiraProvider()
slack = SlackProvider()
google = GoogleProvider()
github = GitHubProvider()

PROVIDER_REGISTRY: dict[str, Provider] = {p.name: p for p in (jira, slack, google, github)}


def get_provider(name: str) -> Optional[Provider]:
    return PROVIDER_REGISTRY.get(name)


def get_enabled_providers(settings: Settings) -> list[dict]:
    """Return {"name", "label"} for every provider with an OAuth client configured."""
    return [{"name": p.name, "label": p.label} for p in PROVIDER_REGISTRY.values() if p.is_configured(settings)]
