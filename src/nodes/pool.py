"""
Nodes pool
Discovers component nodes, UI nodes and credentials from an installed
components package and keeps them in memory for the API.
"""
import importlib
import json
import logging
import pkgutil
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, Iterator, List, Optional

from core.config import settings

logger = logging.getLogger(__name__)

UI_CATEGORIES = {
    "CONTAINER": "Container",
    "FORM": "Form",
    "DISPLAY": "Display",
    "ACTION": "Action",
}

SKIP_CATEGORIES = ("Analytic", "SpeechToText")
ICON_EXTENSIONS = (".svg", ".png", ".jpg")


@dataclass
class UINode:
    """A UI component registered at runtime rather than shipped in the components package"""
    label: str
    name: str
    type: str
    category: str
    icon: str = ""
    version: int = 1
    base_classes: List[str] = field(default_factory=lambda: ["UINode"])
    description: str = ""
    template: str = ""
    schema: str = "[]"

    async def render_component(self) -> str:
        return self.template

    async def handle_event(self, *args, **kwargs):
        return None

    def get_properties(self) -> List[Any]:
        try:
            return json.loads(self.schema or "[]")
        except ValueError as e:
            logger.error(f"Error parsing schema for UI node {self.name}: {e}")
            return []

    def get_cache_key(self) -> str:
        return f"ui_{self.name}"

    def get_queue_options(self) -> dict:
        return {"priority": 1, "attempts": 3}

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "name": self.name,
            "type": self.type,
            "category": self.category,
            "icon": self.icon,
            "version": self.version,
            "base_classes": self.base_classes,
            "description": self.description,
            "properties": self.get_properties(),
        }


def describe_component(component: Any) -> dict:
    """Public attributes of a loaded component, for JSON responses"""
    if hasattr(component, "to_dict"):
        return component.to_dict()
    return {
        key: value
        for key, value in vars(component).items()
        if not key.startswith("_") and not callable(value)
    }


def _resolve_icon(component: Any, module: ModuleType) -> Optional[str]:
    icon = getattr(component, "icon", None)
    if not icon or not icon.endswith(ICON_EXTENSIONS) or not getattr(module, "__file__", None):
        return None
    absolute = str(Path(module.__file__).resolve().parent / icon)
    component.icon = absolute
    return absolute


class NodesPool:

    def __init__(self, package: Optional[str] = None):
        self.package = package or settings.NODES_PACKAGE
        self.component_nodes: Dict[str, Any] = {}
        self.component_ui_nodes: Dict[str, Any] = {}
        self.component_credentials: Dict[str, Any] = {}
        self._credential_icon_path: Dict[str, str] = {}

    def initialize(self):
        self.initialize_nodes()
        self.initialize_ui_nodes()
        self.initialize_credentials()
        logger.info(
            f"Nodes pool loaded {len(self.component_nodes)} nodes, "
            f"{len(self.component_ui_nodes)} UI nodes and {len(self.component_credentials)} credentials"
        )

    def _iter_modules(self, subpackage: str, required: bool = True) -> Iterator[ModuleType]:
        name = f"{self.package}.{subpackage}"
        try:
            package = importlib.import_module(name)
        except ImportError as e:
            if required:
                logger.warning(f"Components package {name} not available: {e}")
            return

        for info in pkgutil.walk_packages(package.__path__, prefix=f"{name}."):
            if info.ispkg:
                continue
            try:
                yield importlib.import_module(info.name)
            except Exception as e:
                logger.error(f"Error loading component module {info.name}: {e}")

    def _allowed(self, component: Any, disabled: List[str]) -> bool:
        if getattr(component, "author", None) and not settings.SHOW_COMMUNITY_NODES:
            return False
        return getattr(component, "name", None) not in disabled

    def initialize_nodes(self):
        for module in self._iter_modules("nodes"):
            node_class = getattr(module, "node_class", None)
            if node_class is None:
                continue
            try:
                node = node_class()
            except Exception as e:
                logger.error(f"Error creating node from {module.__name__}: {e}")
                continue
            node.file_path = getattr(module, "__file__", None)

            icon = _resolve_icon(node, module)
            credential = getattr(node, "credential", None)
            if icon and credential:
                names = credential.get("credential_names", []) if isinstance(credential, dict) \
                    else getattr(credential, "credential_names", [])
                for credential_name in names:
                    self._credential_icon_path[credential_name] = icon

            if getattr(node, "category", None) in SKIP_CATEGORIES:
                continue
            if self._allowed(node, settings.DISABLED_NODES):
                self.component_nodes[node.name] = node

    def initialize_ui_nodes(self):
        categories = UI_CATEGORIES.values()
        for module in self._iter_modules("ui", required=False):
            ui_node_class = getattr(module, "ui_node_class", None)
            if ui_node_class is None:
                continue
            try:
                node = ui_node_class()
            except Exception as e:
                logger.error(f"Error loading UI node from {module.__name__}: {e}")
                continue
            node.file_path = getattr(module, "__file__", None)
            _resolve_icon(node, module)

            if getattr(node, "category", None) not in categories:
                continue
            if self._allowed(node, settings.DISABLED_UI_NODES):
                self.component_ui_nodes[node.name] = node

    def initialize_credentials(self):
        for module in self._iter_modules("credentials"):
            if not module.__name__.endswith("_credential"):
                continue
            credential_class = getattr(module, "credential_class", None)
            if credential_class is None:
                continue
            try:
                credential = credential_class()
            except Exception as e:
                logger.error(f"Error creating credential from {module.__name__}: {e}")
                continue
            credential.icon = self._credential_icon_path.get(credential.name, "")
            self.component_credentials[credential.name] = credential

    def register_ui_node(self, name: str, data: Optional[dict]) -> Optional[UINode]:
        """Register a UI node from stored component data; None when the data is invalid"""
        if not name or not data or not data.get("type") or not data.get("category"):
            logger.error(f"Invalid UI component data for {name}")
            return None

        if data["category"] not in UI_CATEGORIES.values():
            logger.error(f"Invalid category '{data['category']}' for UI component {name}")
            return None

        node = UINode(
            label=data.get("name") or name,
            name=name,
            type=data["type"],
            category=data["category"],
            icon=data.get("icon") or "",
            description=data.get("description") or "",
            template=data.get("template") or "",
            schema=data.get("schema") or "[]",
        )
        self.component_ui_nodes[name] = node
        return node

    def unregister_ui_node(self, name: str) -> bool:
        return self.component_ui_nodes.pop(name, None) is not None

    def get_ui_nodes_by_category(self, category: str) -> Dict[str, Any]:
        return {name: node for name, node in self.component_ui_nodes.items() if node.category == category}

    def get_ui_nodes_grouped_by_category(self) -> Dict[str, Dict[str, Any]]:
        grouped: Dict[str, Dict[str, Any]] = {category: {} for category in UI_CATEGORIES.values()}
        for name, node in self.component_ui_nodes.items():
            if node.category in grouped:
                grouped[node.category][name] = node
        return grouped

    def get_ui_nodes_by_type(self, node_type: str) -> Dict[str, Any]:
        return {name: node for name, node in self.component_ui_nodes.items() if node.type == node_type}

    def create_ui_node_factory(self, node_type: str) -> Callable[[str, dict], Optional[UINode]]:
        def factory(name: str, data: dict) -> Optional[UINode]:
            return self.register_ui_node(name, {**(data or {}), "type": node_type})
        return factory


nodes_pool = NodesPool()
