"""httpkeep controllers.

  - base.py   : Controller (abstract), ConnectionState, RequestContext
  - dynamic.py: DynamicController: wait-for-body sub-protocol + cached response
"""
from httpkeep.controller.base import ConnectionState, Controller, RequestContext
from httpkeep.controller.dynamic import DynamicController

__all__ = ["ConnectionState", "Controller", "DynamicController", "RequestContext"]
