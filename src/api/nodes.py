"""
Nodes pool routes
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from core.exceptions import NotFoundException, ValidationException
from middleware.auth_dependencies import CurrentUser, get_current_user, require_roles
from nodes import describe_component, nodes_pool
from services.rbac_seed import SYSTEM_ROLES_NAME
from schemas.node import UINodeRegister, UI_CATEGORY_NAMES


router = APIRouter(prefix="/api/v1", tags=["nodes"])


def _describe_all(components: dict) -> list:
    return [describe_component(component) for component in components.values()]


@router.get("/nodes")
async def list_nodes(current_user: CurrentUser = Depends(get_current_user)):
    return _describe_all(nodes_pool.component_nodes)


@router.get("/nodes/{name}")
async def get_node(name: str, current_user: CurrentUser = Depends(get_current_user)):
    node = nodes_pool.component_nodes.get(name)
    if node is None:
        raise NotFoundException(f"Node {name} not found")
    return describe_component(node)


@router.get("/credentials")
async def list_credentials(current_user: CurrentUser = Depends(get_current_user)):
    return _describe_all(nodes_pool.component_credentials)


@router.get("/ui-nodes")
async def list_ui_nodes(
    category: Optional[str] = Query(None, description="Container, Form, Display or Action"),
    type: Optional[str] = Query(None, description="Filter by UI node type"),
    current_user: CurrentUser = Depends(get_current_user)
):
    if category:
        if category not in UI_CATEGORY_NAMES:
            raise ValidationException(f"Invalid category '{category}'")
        return _describe_all(nodes_pool.get_ui_nodes_by_category(category))
    if type:
        return _describe_all(nodes_pool.get_ui_nodes_by_type(type))
    return _describe_all(nodes_pool.component_ui_nodes)


@router.get("/ui-nodes/grouped")
async def list_ui_nodes_grouped(current_user: CurrentUser = Depends(get_current_user)):
    grouped = nodes_pool.get_ui_nodes_grouped_by_category()
    return {category: _describe_all(nodes) for category, nodes in grouped.items()}


@router.post("/ui-nodes/{name}", status_code=status.HTTP_201_CREATED)
async def register_ui_node(
    name: str,
    node_data: UINodeRegister,
    current_user: CurrentUser = Depends(require_roles([SYSTEM_ROLES_NAME["ADMIN"]]))
):
    node = nodes_pool.register_ui_node(name, node_data.to_component_data())
    if node is None:
        raise ValidationException(f"Invalid UI component data for {name}")
    return node.to_dict()


@router.delete("/ui-nodes/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def unregister_ui_node(
    name: str,
    current_user: CurrentUser = Depends(require_roles([SYSTEM_ROLES_NAME["ADMIN"]]))
):
    if not nodes_pool.unregister_ui_node(name):
        raise NotFoundException(f"UI node {name} not found")
