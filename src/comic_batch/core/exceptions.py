"""项目内使用的自定义异常定义。"""


class ComicBatchError(Exception):
    """基础异常类型。"""


class ToolNotFound(ComicBatchError):
    """找不到外部图像处理程序时抛出。"""


class ToolUnusable(ComicBatchError):
    """外部图像处理程序无法正常运行时抛出。"""


class InvalidParameter(ComicBatchError):
    """处理参数不合法时抛出。"""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class DirectoryError(ComicBatchError):
    """目录无法读取或创建。"""


class DimensionProbeFailure(ComicBatchError):
    """无法获取图片尺寸。"""


class BatchExecutionFailure(ComicBatchError):
    """批处理进程启动失败或以非零状态退出。"""

