from .pool import NodesPool, UINode, UI_CATEGORIES, describe_component, nodes_pool

__all__ = ["NodesPool", "UINode", "UI_CATEGORIES", "describe_component", "nodes_pool"]
