"""离线工具：无状态解析器、抓包读取与已购项目文件"""
