"""业务异常。路由层负责转为 HTTPException，控制器负责写入用户可见的错误文案。"""


class StudyAppError(Exception):
    """所有业务异常的基类。"""


class RequestValidationError(StudyAppError):
    """所需文件缺失等校验失败，属于非致命错误，不会触发网络请求。"""


class ConfigurationError(StudyAppError):
    """缺少生成服务凭证等配置问题，在开始流式输出前抛出。"""


class GenerationError(StudyAppError):
    """生成服务或传输层出错，message 为服务端原始报错。"""


class UnsupportedFileError(StudyAppError):
    """单个上传文件无法接收（类型不支持、过大或读取失败）。"""


class SessionNotFoundError(StudyAppError):
    pass
