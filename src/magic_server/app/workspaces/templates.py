from __future__ import annotations

"""
Compiled-in catalog of workspace templates.

Templates are immutable blueprints (image, env, ports, features) loaded once at
import time. The registry performs no disk or network access when queried.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from magic_server.app.errors import TemplateNotFound


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    icon: str


@dataclass(frozen=True)
class Template:
    """
    Immutable workspace blueprint.

    ``env`` holds ``KEY=VALUE`` strings and ``ports`` holds
    ``(container_port, host_port)`` pairs such as ``("8080/tcp", "8443")``.
    ``command`` overrides the image's default command when set.
    """

    id: str
    name: str
    description: str
    icon: str
    category: str
    features: Tuple[str, ...]
    image: str
    env: Tuple[str, ...] = ()
    ports: Tuple[Tuple[str, str], ...] = ()
    command: Optional[Tuple[str, ...]] = field(default=None)

    def port_map(self) -> Dict[str, str]:
        """
        Fresh ``{container_port: host_port}`` mapping for container creation.
        """
        return dict(self.ports)


CATEGORIES: Tuple[Category, ...] = (
    Category("productivity", "Productivity", "⚡"),
    Category("finance", "Finance", "💰"),
    Category("development", "Development", "🛠️"),
    Category("ai", "AI & Agents", "🧠"),
    Category("data", "Data", "📊"),
)

_KEEP_ALIVE = ("sleep", "infinity")
_HTTP_SERVE = ("python", "-m", "http.server", "8000")

TEMPLATES: Tuple[Template, ...] = (
    Template(
        id="email-manager",
        name="Email Manager",
        description="AI-powered email management. Summarize, categorize, and draft replies.",
        icon="📧",
        category="productivity",
        features=(
            "AI email summarization",
            "Smart categorization",
            "Draft replies with AI",
            "Unsubscribe automation",
        ),
        image="python:3.12-slim",
        env=("MAGIC_APP=email-manager",),
        ports=(("8000/tcp", "8101"),),
        command=_HTTP_SERVE,
    ),
    Template(
        id="email-unsubscriber",
        name="Email Unsubscriber",
        description="Automatically find and unsubscribe from unwanted email lists.",
        icon="🚫",
        category="productivity",
        features=(
            "Scan for subscription emails",
            "One-click unsubscribe",
            "Blocklist management",
            "Weekly cleanup reports",
        ),
        image="python:3.12-slim",
        env=("MAGIC_APP=email-unsubscriber",),
        command=_KEEP_ALIVE,
    ),
    Template(
        id="email-reader",
        name="Clean Email Reader",
        description="Distraction-free email reading with yes/no/reply quick actions.",
        icon="📖",
        category="productivity",
        features=(
            "Clean reading view",
            "Yes / No / Reply actions",
            "AI-generated draft replies",
            "Priority inbox",
        ),
        image="python:3.12-slim",
        env=("MAGIC_APP=email-reader",),
        ports=(("8000/tcp", "8102"),),
        command=_HTTP_SERVE,
    ),
    Template(
        id="crypto-tracker",
        name="Crypto Workspace",
        description="Private crypto portfolio tracking, DeFi monitoring, and wallet management.",
        icon="🪙",
        category="finance",
        features=(
            "Portfolio tracking",
            "DeFi position monitoring",
            "Wallet analytics",
            "Price alerts via AI",
        ),
        image="python:3.12-slim",
        env=("MAGIC_APP=crypto-tracker",),
        ports=(("8000/tcp", "8201"),),
        command=_HTTP_SERVE,
    ),
    Template(
        id="dev-workspace",
        name="Dev Workspace",
        description="Full development environment with code editor, terminal, and AI assistant.",
        icon="💻",
        category="development",
        features=(
            "VS Code in browser",
            "AI pair programming",
            "Git integration",
            "Live preview",
        ),
        image="codercom/code-server:latest",
        env=("DOCKER_USER=coder",),
        ports=(("8080/tcp", "8443"),),
    ),
    Template(
        id="minimal-dev",
        name="Minimal Dev Box",
        description="Bare Alpine shell for quick experiments and scripted commands.",
        icon="📦",
        category="development",
        features=(
            "Alpine Linux shell",
            "Fast startup",
        ),
        image="alpine:3.20",
        command=_KEEP_ALIVE,
    ),
    Template(
        id="ai-agent",
        name="AI Agent",
        description="Deploy an agent that runs tasks autonomously on your behalf.",
        icon="🤖",
        category="ai",
        features=(
            "Autonomous task execution",
            "Long-running workflows",
            "Self-improving skills",
            "Multi-tool integration",
        ),
        image="python:3.12-slim",
        env=("MAGIC_APP=ai-agent",),
        command=_KEEP_ALIVE,
    ),
    Template(
        id="file-manager",
        name="File Manager",
        description="Cloud file storage with AI-powered search and organization.",
        icon="📁",
        category="productivity",
        features=(
            "100GB storage",
            "AI file search",
            "Auto-organization",
            "Sync across devices",
        ),
        image="filebrowser/filebrowser:latest",
        ports=(("80/tcp", "8180"),),
    ),
    Template(
        id="web-scraper",
        name="Web Scraper",
        description="Automated web scraping and data collection with AI parsing.",
        icon="🕷️",
        category="data",
        features=(
            "Visual scraper builder",
            "AI data extraction",
            "Scheduled scrapes",
            "Export to CSV/JSON",
        ),
        image="python:3.12-slim",
        env=("MAGIC_APP=web-scraper",),
        command=_KEEP_ALIVE,
    ),
)


class TemplateRegistry:
    """
    Read-only view over a template catalog, ordered by category.

    Templates are grouped in the order their categories are declared; within a
    category the declaration order is kept. Templates whose category is not
    declared are listed last.
    """

    def __init__(
        self,
        templates: Iterable[Template] = TEMPLATES,
        categories: Sequence[Category] = CATEGORIES,
    ) -> None:
        items = list(templates)
        seen: Dict[str, Template] = {}
        for t in items:
            if t.id in seen:
                raise ValueError(f"Duplicate template id: {t.id}")
            seen[t.id] = t
        rank = {c.id: i for i, c in enumerate(categories)}
        ordered = sorted(
            enumerate(items),
            key=lambda pair: (rank.get(pair[1].category, len(rank)), pair[0]),
        )
        self._templates: Tuple[Template, ...] = tuple(t for _, t in ordered)
        self._by_id = seen
        self._categories: Tuple[Category, ...] = tuple(categories)

    def list(self) -> Tuple[Template, ...]:
        return self._templates

    def get(self, template_id: str) -> Template:
        template = self._by_id.get(template_id)
        if template is None:
            raise TemplateNotFound(f"Template not found: {template_id}")
        return template

    def categories(self) -> Tuple[Category, ...]:
        return self._categories

    def by_category(self, category: str) -> List[Template]:
        return [t for t in self._templates if t.category == category]


@lru_cache(maxsize=1)
def default_registry() -> TemplateRegistry:
    return TemplateRegistry()


__all__ = [
    "Category",
    "Template",
    "CATEGORIES",
    "TEMPLATES",
    "TemplateRegistry",
    "default_registry",
]
