"""房间文件分享业务包：匿名房间内的文件/文件夹管理、同步与分享。"""

from app.packages.types import AppPackage

from .api.v1 import api_router
from .core.config import get_settings
from .core.dependencies import get_object_store
from .core.exceptions import generic_exception_handler, http_exception_handler
from .core.logger import logger, setup_logging
from .core.responses import create_response
from .db.init_db import init_db

package = AppPackage(
    name="sharebox",
    api_router=api_router,
    get_settings=get_settings,
    setup_logging=setup_logging,
    logger=logger,
    init_db=init_db,
    get_object_store=get_object_store,
    create_response=create_response,
    http_exception_handler=http_exception_handler,
    generic_exception_handler=generic_exception_handler,
)

__all__ = ["package", "api_router", "get_settings"]
