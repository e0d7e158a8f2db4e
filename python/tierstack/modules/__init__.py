"""
tierstack/modules/__init__.py

The module library. Each module exposes a pure TEMPLATE (declared input names
plus a render function) that the ModuleGraph evaluates.
"""

from typing import Dict

from tierstack.deployment.graph import ModuleTemplate
from tierstack.modules import compute, database, load_balancer, networking, security

TEMPLATES: Dict[str, ModuleTemplate] = {
    networking.MODULE: networking.TEMPLATE,
    security.MODULE: security.TEMPLATE,
    database.MODULE: database.TEMPLATE,
    load_balancer.MODULE: load_balancer.TEMPLATE,
    compute.MODULE: compute.TEMPLATE,
}

__all__ = ["TEMPLATES", "compute", "database", "load_balancer", "networking", "security"]
