"""
texthooker
~~~~~~~~~~

实时协作文本采集服务：会话存储 REST 接口、房间广播中继与本地采集客户端。
"""
__version__ = "0.1.0"
