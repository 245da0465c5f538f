"""外部网关适配器"""
