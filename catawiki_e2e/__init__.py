"""
@PURPOSE: Catawiki 端到端测试支持包, 核心是 Cookie 同意会话引导与会话复用
@OUTLINE:
  - browser/: 浏览器管理, 会话快照, 同意引导
  - api/: 搜索建议接口契约客户端
  - config/: 配置管理
  - fixtures.py: pytest fixtures(consented_page 等)
  - cli/: 命令行工具
"""

__version__ = "0.1.0"
