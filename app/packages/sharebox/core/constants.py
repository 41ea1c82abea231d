"""常量定义：HTTP 状态码与存储约定。"""

from typing import Final

HTTP_STATUS_OK: Final = 200
HTTP_STATUS_BAD_REQUEST: Final = 400
HTTP_STATUS_FORBIDDEN: Final = 403
HTTP_STATUS_NOT_FOUND: Final = 404
HTTP_STATUS_CONFLICT: Final = 409
HTTP_STATUS_GONE: Final = 410
HTTP_STATUS_INTERNAL_SERVER_ERROR: Final = 500
HTTP_STATUS_SERVICE_UNAVAILABLE: Final = 503

# 对象 key 分隔符
KEY_SEPARATOR: Final = "/"

# 空文件夹占位对象：对象存储没有目录实体，空前缀会直接消失
KEEP_MARKER_NAME: Final = ".keep"
# 历史数据中根目录使用的占位文件名
MARKER_NAMES: Final = frozenset({KEEP_MARKER_NAME, ".keepfolder"})

DEFAULT_MIME_TYPE: Final = "application/octet-stream"
